# tests/conftest.py
import asyncio
import os
from typing import Dict, List, Optional, Tuple

import pytest
from httpx import AsyncClient, ASGITransport

# ---- 測試期環境變數（先於 app 載入）----
os.environ.setdefault("ENV", "test")

from app.main import app  # noqa: E402
from app.db.session import engine, session_scope  # noqa: E402
from app.models.base import Base  # noqa: E402
from app.models import ingredient  # noqa: E402,F401  註冊 ingredients 表
from app.schemas.normalization import CanonicalIngredient  # noqa: E402
from app.services.ingredient_seed import seed_ingredients  # noqa: E402
from app.services.ingredient_store import SimilarityUnavailable, sort_search_results  # noqa: E402

# 測試用的小字典
TEST_INGREDIENTS = [
    "tomatoes", "bell peppers", "basil", "olive oil", "garlic",
    "ground beef", "cheese", "salt", "onions", "milk",
]


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    """測試前 create_all + 種子資料，測試後 drop_all（用 asyncio.run 避免事件圈衝突）。"""
    async def init_models():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        async with session_scope() as db:
            await seed_ingredients(db, TEST_INGREDIENTS)
        # 連線不要留到別的 event loop
        await engine.dispose()

    async def drop_models():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

    asyncio.run(init_models())
    yield
    asyncio.run(drop_models())


@pytest.fixture(scope="session")
def anyio_backend():
    """讓 pytest 使用 asyncio event loop。"""
    return "asyncio"


@pytest.fixture
async def client():
    """使用 ASGITransport 直接掛載 app，不需啟動伺服器。"""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


@pytest.fixture(autouse=True)
def reset_shared_state():
    """app.state 上的 cache / analytics 是全域共用的，每個測試前清空"""
    app.state.normalization_cache.clear()
    app.state.normalization_analytics.reset()
    yield


class FakeIngredientStore:
    """
    記憶體版 store，行為對齊 SqlIngredientStore：
    - similarity=None 時 find_similar 丟 SimilarityUnavailable（等同 SQLite）
    - similarity 給一個 (text, name) -> score 函式時模擬 pg_trgm
    """

    def __init__(self, names: List[str], similarity=None):
        self.items = [CanonicalIngredient(id=i + 1, name=n) for i, n in enumerate(names)]
        self.similarity = similarity
        self.calls: Dict[str, int] = {}
        self.fail_on: Dict[str, Exception] = {}

    def _hit(self, op: str) -> None:
        self.calls[op] = self.calls.get(op, 0) + 1
        if op in self.fail_on:
            raise self.fail_on[op]

    async def find_exact(self, name: str) -> Optional[CanonicalIngredient]:
        self._hit("find_exact")
        key = name.strip().lower()
        return next((i for i in self.items if i.name.lower() == key), None)

    async def find_similar(self, text: str, threshold: float, limit: int) -> List[Tuple[CanonicalIngredient, float]]:
        self._hit("find_similar")
        if self.similarity is None:
            raise SimilarityUnavailable("no pg_trgm in memory")
        scored = [(i, self.similarity(text.lower(), i.name.lower())) for i in self.items]
        scored = [(i, s) for i, s in scored if s >= threshold]
        scored.sort(key=lambda p: (-p[1], p[0].name))
        return scored[:limit]

    async def find_containing(self, substring: str, limit: int) -> List[CanonicalIngredient]:
        self._hit("find_containing")
        sub = substring.lower()
        hits = [i for i in self.items if sub in i.name.lower()]
        hits.sort(key=lambda i: (len(i.name), i.name))
        return hits[:limit]

    async def list_names(self, limit: int) -> List[str]:
        return [i.name for i in await self.list_ingredients(limit)]

    async def list_ingredients(self, limit: int) -> List[CanonicalIngredient]:
        self._hit("list_ingredients")
        return sorted(self.items, key=lambda i: i.name)[:limit]

    async def search(self, prefix: Optional[str], limit: int) -> List[CanonicalIngredient]:
        self._hit("search")
        term = (prefix or "").strip().lower()
        items = [i for i in self.items if i.name.lower().startswith(term)]
        return sort_search_results(items, term)[:limit] if term else items[:limit]


@pytest.fixture
def fake_store():
    return FakeIngredientStore(TEST_INGREDIENTS)


@pytest.fixture
def make_store():
    """需要自訂字典 / similarity 時用：make_store(["a", "b"], similarity=fn)"""
    return FakeIngredientStore
