"""SummaryModel — a named configuration controlling summary generation."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from app.models.base import TimestampMixin, load_json, new_uuid


class SummarySection(StrEnum):
    KEY_POINTS = "keyPoints"
    DECISIONS = "decisions"
    ACTION_ITEMS = "actionItems"
    QUESTIONS = "questions"


class SummaryTone(StrEnum):
    PROFESSIONAL = "professional"
    FORMAL = "formal"
    CASUAL = "casual"


ALL_SECTIONS: tuple[SummarySection, ...] = tuple(SummarySection)


class SummaryModel(TimestampMixin, SQLModel, table=True):
    __tablename__ = "summary_models"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    # NULL = catalogue entry visible from every space
    space_id: uuid.UUID | None = Field(default=None, nullable=True, index=True)

    name: str = Field(max_length=255, nullable=False)
    description: str = Field(default="", max_length=1000)
    sections: str = Field(
        default='["keyPoints", "decisions", "actionItems", "questions"]',
        sa_column=Column(Text, nullable=False),
    )
    tone: SummaryTone = Field(default=SummaryTone.PROFESSIONAL)
    detail_level: int = Field(default=2, ge=1, le=3)
    custom_instructions: str | None = Field(default=None, sa_column=Column(Text))

    is_default: bool = Field(default=False)
    is_shared: bool = Field(default=False)


# ── Pydantic schemas ─────────────────────────────────────────

class SummaryModelCreate(SQLModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=1000)
    space_id: uuid.UUID | None = None
    sections: list[SummarySection] = Field(default_factory=lambda: list(ALL_SECTIONS))
    tone: SummaryTone = SummaryTone.PROFESSIONAL
    detail_level: int = Field(default=2, ge=1, le=3)
    custom_instructions: str | None = None
    is_default: bool = False
    is_shared: bool = False


class SummaryModelRead(SQLModel):
    id: uuid.UUID
    space_id: uuid.UUID | None
    name: str
    description: str
    sections: list[SummarySection]
    tone: SummaryTone
    detail_level: int
    custom_instructions: str | None
    is_default: bool
    is_shared: bool
    created_at: datetime

    @classmethod
    def from_model(cls, m: SummaryModel) -> "SummaryModelRead":
        return cls(
            id=m.id,
            space_id=m.space_id,
            name=m.name,
            description=m.description,
            sections=load_json(m.sections, []),
            tone=m.tone,
            detail_level=m.detail_level,
            custom_instructions=m.custom_instructions,
            is_default=m.is_default,
            is_shared=m.is_shared,
            created_at=m.created_at,
        )
