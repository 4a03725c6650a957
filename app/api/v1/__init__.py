"""V1 API router aggregation."""

from fastapi import APIRouter

from app.api.v1.conversations import router as conversations_router
from app.api.v1.search import router as search_router
from app.api.v1.sources import router as sources_router
from app.api.v1.spaces import router as spaces_router
from app.api.v1.summary_models import router as summary_models_router
from app.api.v1.transcriptions import router as transcriptions_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(spaces_router)
v1_router.include_router(sources_router)
v1_router.include_router(search_router)
v1_router.include_router(conversations_router)
v1_router.include_router(transcriptions_router)
v1_router.include_router(summary_models_router)
