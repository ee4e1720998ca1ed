from fastapi import APIRouter, Depends, Request
from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db

router = APIRouter()

@router.get("/", summary="Health check (DB / cache / LLM fallback)")
async def health_root(request: Request, db: AsyncSession = Depends(get_db)):
    db_ok = True
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Health check DB query failed: {}", e)
        db_ok = False

    state = request.app.state
    return {
        "status": "ok" if db_ok else "degraded",
        "database": db_ok,
        "cache_size": len(state.normalization_cache),
        "llm_enabled": state.llm_matcher.enabled,
    }
