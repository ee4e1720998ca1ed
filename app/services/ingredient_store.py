# app/services/ingredient_store.py
"""
Canonical ingredient store：正規化流程只透過這個窄介面讀食材字典。

- find_exact：大小寫不敏感的完全比對
- find_similar：pg_trgm similarity() 模糊比對；非 PostgreSQL 時丟 SimilarityUnavailable，
  呼叫端要自己退回 find_containing
- find_containing：normalized_name LIKE '%x%' 子字串搜尋
- list_names / list_ingredients：給 LLM 當上下文用的有限清單
- search：/ingredients 查詢用的前綴搜尋（exact > prefix > 短名稱 > 字母序）
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ingredient import Ingredient
from app.schemas.normalization import CanonicalIngredient


class SimilarityUnavailable(RuntimeError):
    """資料庫不支援 similarity 搜尋（例如 SQLite 或沒裝 pg_trgm）"""


class IngredientStore(Protocol):
    async def find_exact(self, name: str) -> Optional[CanonicalIngredient]: ...

    async def find_similar(
        self, text: str, threshold: float, limit: int
    ) -> List[Tuple[CanonicalIngredient, float]]: ...

    async def find_containing(self, substring: str, limit: int) -> List[CanonicalIngredient]: ...

    async def list_names(self, limit: int) -> List[str]: ...

    async def list_ingredients(self, limit: int) -> List[CanonicalIngredient]: ...

    async def search(self, prefix: Optional[str], limit: int) -> List[CanonicalIngredient]: ...


def _escape_like(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def sort_search_results(items: Sequence[CanonicalIngredient], term: str) -> List[CanonicalIngredient]:
    t = term.lower()

    def _key(ing: CanonicalIngredient):
        name = ing.name.lower()
        return (name != t, not name.startswith(t), len(ing.name), name)

    return sorted(items, key=_key)


class SqlIngredientStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _dialect(self) -> str:
        bind = self.db.get_bind()
        return bind.dialect.name if bind is not None else ""

    async def find_exact(self, name: str) -> Optional[CanonicalIngredient]:
        key = (name or "").strip().lower()
        if not key:
            return None
        result = await self.db.execute(select(Ingredient).where(Ingredient.normalized_name == key))
        row = result.scalars().first()
        return CanonicalIngredient.model_validate(row) if row else None

    async def find_similar(
        self, text: str, threshold: float, limit: int
    ) -> List[Tuple[CanonicalIngredient, float]]:
        if self._dialect() != "postgresql":
            raise SimilarityUnavailable(f"similarity search not supported on {self._dialect() or 'unknown'}")

        sim = func.similarity(Ingredient.normalized_name, text.lower())
        stmt = (
            select(Ingredient, sim.label("score"))
            .where(sim >= threshold)
            .order_by(sim.desc(), Ingredient.name)
            .limit(limit)
        )
        # 沒裝 pg_trgm 時查詢會失敗；包在 SAVEPOINT 裡，失敗只回滾這一段，後續 fallback 還能用同一個 session
        async with self.db.begin_nested():
            result = await self.db.execute(stmt)
            rows = result.all()
        return [(CanonicalIngredient.model_validate(row), float(s or 0.0)) for row, s in rows]

    async def find_containing(self, substring: str, limit: int) -> List[CanonicalIngredient]:
        pattern = f"%{_escape_like(substring.lower())}%"
        stmt = (
            select(Ingredient)
            .where(Ingredient.normalized_name.like(pattern, escape="\\"))
            .order_by(func.length(Ingredient.name), Ingredient.name)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return [CanonicalIngredient.model_validate(r) for r in result.scalars().all()]

    async def list_names(self, limit: int) -> List[str]:
        return [i.name for i in await self.list_ingredients(limit)]

    async def list_ingredients(self, limit: int) -> List[CanonicalIngredient]:
        result = await self.db.execute(select(Ingredient).order_by(Ingredient.name).limit(limit))
        return [CanonicalIngredient.model_validate(r) for r in result.scalars().all()]

    async def search(self, prefix: Optional[str], limit: int) -> List[CanonicalIngredient]:
        stmt = select(Ingredient).order_by(Ingredient.name).limit(limit)
        term = (prefix or "").strip()
        if term:
            stmt = stmt.where(Ingredient.normalized_name.like(f"{_escape_like(term.lower())}%", escape="\\"))
        result = await self.db.execute(stmt)
        items = [CanonicalIngredient.model_validate(r) for r in result.scalars().all()]
        return sort_search_results(items, term) if term else items
