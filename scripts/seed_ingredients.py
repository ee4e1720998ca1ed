# scripts/seed_ingredients.py
import argparse
import asyncio
from pathlib import Path

from app.db.session import engine, session_scope
from app.models.base import Base
from app.models import ingredient  # noqa: F401
from app.services.ingredient_seed import DEFAULT_INGREDIENTS, seed_ingredients


def _load_names(path: str):
    # 一行一個食材名稱，# 開頭視為註解
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    return [ln.strip() for ln in lines if ln.strip() and not ln.strip().startswith("#")]


async def main(path: str = None, create_tables: bool = False):
    if create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    names = _load_names(path) if path else DEFAULT_INGREDIENTS
    async with session_scope() as db:
        added = await seed_ingredients(db, names)
    print({"added": added, "total_input": len(names)})
    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed canonical ingredients")
    parser.add_argument("--file", help="newline-delimited ingredient names")
    parser.add_argument("--create-tables", action="store_true", help="create tables before seeding (dev only)")
    args = parser.parse_args()
    asyncio.run(main(args.file, args.create_tables))
