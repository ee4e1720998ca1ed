"""create ingredients table

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-01-06 11:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'ingredients',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=100), nullable=False, unique=True),
        sa.Column('normalized_name', sa.String(length=100), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_ingredients_id', 'ingredients', ['id'])
    op.create_index('ix_ingredients_normalized_name', 'ingredients', ['normalized_name'])

    # PostgreSQL 才有 pg_trgm；其他 DB 由 substring fallback 頂著
    if op.get_bind().dialect.name == 'postgresql':
        op.execute("CREATE EXTENSION IF NOT EXISTS pg_trgm")
        op.execute(
            "CREATE INDEX IF NOT EXISTS ingredients_normalized_name_trgm_idx "
            "ON ingredients USING GIN (normalized_name gin_trgm_ops)"
        )


def downgrade() -> None:
    """Downgrade schema."""
    if op.get_bind().dialect.name == 'postgresql':
        op.execute("DROP INDEX IF EXISTS ingredients_normalized_name_trgm_idx")
    op.drop_index('ix_ingredients_normalized_name', table_name='ingredients')
    op.drop_index('ix_ingredients_id', table_name='ingredients')
    op.drop_table('ingredients')
