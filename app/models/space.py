"""Space model — a named collection of sources and conversations."""

import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, new_uuid


class Space(TimestampMixin, SQLModel, table=True):
    __tablename__ = "spaces"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    nom: str = Field(max_length=255, nullable=False)
    description: str = Field(default="", max_length=2000)

    # Summary configuration applied to new summaries in this space
    summary_model_id: uuid.UUID | None = Field(
        default=None, foreign_key="summary_models.id", nullable=True,
    )


# ── Pydantic schemas ─────────────────────────────────────────

class SpaceCreate(SQLModel):
    nom: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=2000)
    summary_model_id: uuid.UUID | None = None


class SpaceRead(SQLModel):
    id: uuid.UUID
    nom: str
    description: str
    summary_model_id: uuid.UUID | None
    created_at: datetime
    updated_at: datetime
