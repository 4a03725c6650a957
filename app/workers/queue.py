"""ARQ connection settings and the enqueue helper used by the web process."""

from __future__ import annotations

import logging

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from app.core.config import get_settings

logger = logging.getLogger(__name__)


def _redis_settings() -> RedisSettings:
    """Parse REDIS_URL into ARQ RedisSettings."""
    settings = get_settings()
    # redis://host:port/db
    rest = settings.redis_url.split("://", 1)[-1]
    host_port, _, db = rest.partition("/")
    host, _, port = host_port.partition(":")
    return RedisSettings(
        host=host or "localhost",
        port=int(port) if port else 6379,
        database=int(db) if db else 0,
    )


async def enqueue_job(function: str, **kwargs) -> None:
    """Enqueue one ARQ job on a short-lived pool."""
    redis: ArqRedis = await create_pool(_redis_settings())
    try:
        await redis.enqueue_job(function, **kwargs)
    finally:
        await redis.aclose()
