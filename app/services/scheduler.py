# app/services/scheduler.py
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
from fastapi import FastAPI

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings

logger = logging.getLogger(__name__)

scheduler: Optional[AsyncIOScheduler] = None


@asynccontextmanager
async def lifespan_scheduler(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan：啟動 / 關閉 APScheduler。
    需接受 app 參數（FastAPI 會注入），否則會出現 TypeError。
    """
    global scheduler
    scheduler = AsyncIOScheduler(timezone="UTC")
    interval = max(1, int(settings.CACHE_CLEANUP_INTERVAL_MIN))
    scheduler.add_job(run_cache_cleanup_job, IntervalTrigger(minutes=interval), args=[app])
    scheduler.start()
    logger.info("APScheduler started: cache cleanup every %s minutes", interval)
    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)
            logger.info("APScheduler shutdown")


async def run_cache_cleanup_job(app: FastAPI) -> dict:
    """排程作業：清掉兩個 cache 裡已過期的 entry。"""
    removed = {"normalization": 0, "llm": 0}
    try:
        removed["normalization"] = app.state.normalization_cache.cleanup()
        removed["llm"] = app.state.llm_matcher.cleanup_cache()
        logger.info("Cache cleanup done", extra={"removed": removed})
    except Exception as e:
        logger.exception("Cache cleanup failed: %s", e)
    return removed
