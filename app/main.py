# app/main.py
import logging
import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import Settings, settings
from app.core.logging import setup_logging
from app.core.errors import register_error_handlers
from app.api.v1.router import api_router
from app.services.analytics import NormalizationAnalytics
from app.services.cache import TTLCache
from app.services.llm_normalization import build_llm_matcher
from app.services.scheduler import lifespan_scheduler  # lifespan（排程）

# Monitoring
import sentry_sdk
from prometheus_fastapi_instrumentator import Instrumentator

logger = setup_logging(os.getenv("LOG_LEVEL", "INFO"))
log = logging.getLogger(__name__)


def _validate_llm_config(cfg: Settings) -> None:
    """
    部署前檢查：prod/staging 開了 LLM fallback 卻沒給金鑰時直接報錯，
    dev/test 只會由 build_llm_matcher 降級成 no-op。
    """
    env = (cfg.ENV or "").lower()
    if env in {"prod", "production", "staging", "preview"} and cfg.ENABLE_LLM_NORMALIZATION:
        missing = [k for k in ("LLM_API_KEY", "LLM_API_URL") if not getattr(cfg, k)]
        if missing:
            raise RuntimeError(
                f"ENABLE_LLM_NORMALIZATION is on but {', '.join(missing)} missing in ENV={cfg.ENV}."
            )


def create_app(cfg: Settings = settings) -> FastAPI:
    _validate_llm_config(cfg)

    # 啟用 lifespan（內含 APScheduler：cache 清理排程）
    app = FastAPI(
        title=cfg.APP_NAME,
        debug=cfg.DEBUG,
        lifespan=lifespan_scheduler,
    )

    # 共用元件：cache / LLM fallback / analytics（各 request 的 service 共用這些）
    app.state.normalization_cache = TTLCache(
        max_size=cfg.NORMALIZATION_CACHE_SIZE,
        default_ttl=cfg.NORMALIZATION_CACHE_TTL_SEC,
    )
    app.state.llm_matcher = build_llm_matcher(cfg)
    app.state.normalization_analytics = NormalizationAnalytics()

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---- Sentry 初始化（若 .env/SENTRY_DSN 未設定就略過）----
    sentry_dsn = getattr(cfg, "SENTRY_DSN", None) or os.getenv("SENTRY_DSN")
    if sentry_dsn:
        sentry_sdk.init(
            dsn=sentry_dsn,
            traces_sample_rate=float(getattr(cfg, "SENTRY_TRACES_SAMPLE_RATE", 0.1)),
            environment=getattr(cfg, "SENTRY_ENV", cfg.ENV),
        )

    # ---- Prometheus /metrics ----
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    # 統一錯誤處理
    register_error_handlers(app)

    # === API 路由 ===
    app.include_router(api_router, prefix=cfg.API_V1_PREFIX)

    # 健康檢查（root & ops）
    @app.get("/", summary="Root")
    async def root():
        return {"app": cfg.APP_NAME, "env": cfg.ENV}

    @app.get("/healthz", tags=["ops"])
    async def healthz():
        return {"ok": True}

    @app.get("/readyz", tags=["ops"])
    async def readyz():
        return {"ready": True, "llm_enabled": app.state.llm_matcher.enabled}

    log.info("Application initialized", extra={"env": cfg.ENV})
    return app


# Uvicorn 進入點
app = create_app()
