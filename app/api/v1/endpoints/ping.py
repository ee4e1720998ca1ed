from fastapi import APIRouter

from app.core.config import settings

router = APIRouter()

@router.get("/", summary="Ping service")
async def ping():
    return {"message": "pong", "service": settings.APP_NAME}
