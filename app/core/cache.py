"""In-process TTL cache for per-space aggregates.

Search stats are recomputed from every ready source of a space; dashboards
poll them, so identical requests within a short window are served from here.
The cache lives in one process: writers in this process invalidate the key
``("search", "stats", space_id)``, and readers store a fingerprint of the
space next to the value to notice writes made anywhere else.
"""

import time
from typing import Any

_cache: dict[tuple, tuple[float, Any]] = {}

DEFAULT_TTL = 30


def get(key: tuple, ttl: float = DEFAULT_TTL) -> Any | None:
    """Return the cached value, or None when absent or older than ``ttl``."""
    entry = _cache.get(key)
    if entry is None:
        return None
    stored_at, value = entry
    if time.monotonic() - stored_at > ttl:
        _cache.pop(key, None)
        return None
    return value


def put(key: tuple, value: Any) -> None:
    _cache[key] = (time.monotonic(), value)


def invalidate(key: tuple) -> None:
    _cache.pop(key, None)


def clear() -> None:
    _cache.clear()
