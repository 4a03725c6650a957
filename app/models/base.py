"""Shared base fields and JSON-column helpers for all models."""

import json
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def dump_json(value: Any) -> str:
    """Serialize a value for a JSON ``Text`` column."""
    return json.dumps(value, default=str, ensure_ascii=False)


def load_json(raw: str | None, default: Any) -> Any:
    """Parse a JSON ``Text`` column, falling back to ``default`` when empty."""
    if not raw:
        return default
    if not isinstance(raw, str):
        return raw
    return json.loads(raw)


class TimestampMixin(SQLModel):
    """Created / updated timestamps injected into every table."""

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)
