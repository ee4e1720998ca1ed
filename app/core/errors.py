# app/core/errors.py
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.services.normalization import ErrorCode, NormalizationError

# 業務錯誤碼 → HTTP status
_STATUS_BY_CODE = {
    ErrorCode.EMPTY_INPUT: 400,
    ErrorCode.NO_INGREDIENTS: 400,
    ErrorCode.INSUFFICIENT_CONFIDENCE: 422,
    ErrorCode.INTERNAL_ERROR: 500,
}


def status_for(code: ErrorCode) -> int:
    return _STATUS_BY_CODE.get(code, 500)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):
        # 統一輸出格式
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):
        # 客製化，但保持資訊節制；自訂 validator 的 ctx 內含 ValueError 物件，要先轉成可序列化
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(NormalizationError)
    async def normalization_exc_handler(request: Request, exc: NormalizationError):
        # INTERNAL_ERROR 不回傳內部細節
        body = {"type": "business_logic_error", **exc.to_dict()}
        if exc.code == ErrorCode.INTERNAL_ERROR:
            body["details"] = None
        return JSONResponse(status_code=status_for(exc.code), content={"error": body})

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        # 小強化：避免洩露伺服器細節
        resp = await call_next(request)
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        return resp
