# app/api/v1/endpoints/ingredients.py
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from app.core.deps import get_ingredient_store, get_normalization_service, get_user_id
from app.schemas.normalization import (
    CanonicalIngredient,
    MaintenanceRequest,
    NormalizationResult,
    NormalizeRequest,
)
from app.services.ingredient_store import SqlIngredientStore
from app.services.normalization import IngredientNormalizationService

router = APIRouter(tags=["ingredients"])

WEEK_SEC = 7 * 24 * 60 * 60


@router.get("/", response_model=List[CanonicalIngredient], summary="Search canonical ingredients")
async def list_ingredients(
    search: Optional[str] = Query(None, max_length=100, description="名稱前綴"),
    limit: int = Query(50, ge=1, le=100),
    store: SqlIngredientStore = Depends(get_ingredient_store),
):
    return await store.search(search, limit)


@router.post("/normalize", response_model=NormalizationResult, summary="Normalize raw ingredient text")
async def normalize_ingredients(
    payload: NormalizeRequest,
    response: Response,
    user_id: Optional[str] = Depends(get_user_id),
    service: IngredientNormalizationService = Depends(get_normalization_service),
):
    """
    把使用者輸入的食材文字轉成標準食材 ID 清單。
    錯誤（EMPTY_INPUT / NO_INGREDIENTS / INSUFFICIENT_CONFIDENCE / INTERNAL_ERROR）
    由 app/core/errors.py 統一轉成 400 / 422 / 500。
    """
    result = await service.normalize_ingredients(
        payload.raw_text,
        user_id=user_id,
        min_confidence=payload.min_confidence,
        max_results=payload.max_results,
    )
    response.headers["Cache-Control"] = "private, max-age=300"
    return result


@router.get("/stats", summary="Normalization cache / performance stats")
async def normalization_stats(request: Request):
    state = request.app.state
    cache_stats = state.normalization_cache.get_stats()
    analytics = state.normalization_analytics
    perf = analytics.performance_stats()
    total = max(1, int(perf["total_requests"]))
    recent = analytics.export_events(100)

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "cache": {
            **cache_stats.as_dict(),
            "utilization": f"{cache_stats.size / cache_stats.max_size * 100:.1f}%",
        },
        "llm": {
            "enabled": state.llm_matcher.enabled,
            "cache": state.llm_matcher.cache_stats(),
        },
        "performance": perf,
        "usage": {
            "unique_users": len({e["user_id"] for e in recent if e["user_id"]}),
            "recent_events": len(recent),
        },
        "health": {
            "status": "healthy" if perf["failure_rate"] < 0.05 else "degraded",
            "avg_response_time_ms": perf["avg_processing_time_ms"],
            "error_rate": perf["failure_rate"],
            "cache_efficiency": perf["cache_hit_rate"],
        },
        "failure_patterns": [
            {**p, "percentage": f"{p['count'] / total * 100:.2f}%"}
            for p in analytics.failure_patterns(5)
        ],
    }


@router.post("/stats", summary="Normalization maintenance actions")
async def normalization_maintenance(payload: MaintenanceRequest, request: Request):
    state = request.app.state

    if payload.action == "cleanup_cache":
        removed = state.normalization_cache.cleanup()
        return {"success": True, "result": {
            "action": payload.action,
            "removed_entries": removed,
            "message": f"Cleaned up {removed} expired cache entries",
        }}

    if payload.action == "clear_cache":
        state.normalization_cache.clear()
        state.llm_matcher.clear_cache()
        return {"success": True, "result": {
            "action": payload.action,
            "message": "All cache entries cleared",
        }}

    if payload.action == "get_detailed_analytics":
        events = state.normalization_analytics.export_events(1000)
        return {"success": True, "result": {
            "action": payload.action,
            "events": events,
            "weekly_stats": state.normalization_analytics.performance_stats(WEEK_SEC),
            "message": f"Retrieved {len(events)} recent events and weekly statistics",
        }}

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Invalid action. Supported actions: cleanup_cache, clear_cache, get_detailed_analytics",
    )
