# app/core/deps.py
from typing import Optional
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.session import get_db
from app.services.ingredient_store import SqlIngredientStore
from app.services.normalization import IngredientNormalizationService


async def get_ingredient_store(db: AsyncSession = Depends(get_db)) -> SqlIngredientStore:
    return SqlIngredientStore(db)


async def get_normalization_service(
    request: Request,
    store: SqlIngredientStore = Depends(get_ingredient_store),
) -> IngredientNormalizationService:
    """
    每個 request 一個 service（綁自己的 DB session），
    cache / LLM matcher / analytics 則共用 app.state 上的同一份。
    """
    state = request.app.state
    return IngredientNormalizationService(
        store,
        llm_matcher=state.llm_matcher,
        cache=state.normalization_cache,
        analytics=state.normalization_analytics,
        llm_context_limit=settings.LLM_CONTEXT_LIMIT,
    )


async def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """
    不做認證：上游若有帶 X-User-Id 就拿來記 analytics，沒帶就是 None。
    """
    if x_user_id is None:
        return None
    return x_user_id.strip() or None
