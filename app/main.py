"""FastAPI application entrypoint."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1 import v1_router
from app.core.config import get_settings
from app.core.database import init_db
from app.services.completion import LiteLLMCompletionGateway
from app.services.transcription import DeepgramGateway

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup: tables and the gateways shared by every request
    await init_db()
    settings = get_settings()
    app.state.completion = LiteLLMCompletionGateway.from_settings(settings)
    app.state.transcription = DeepgramGateway.from_settings(settings)
    logger.info("Memora API started (model=%s)", settings.default_llm_model)
    yield
    await app.state.transcription.aclose()


app = FastAPI(
    title="Memora",
    version="0.1.0",
    description="Sources, search and grounded chat for knowledge spaces",
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────
_settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _settings.allowed_origins.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── API routes ───────────────────────────────────────────────
app.include_router(v1_router)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    return {"status": "ok"}
