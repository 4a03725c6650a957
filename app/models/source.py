"""Source model — one knowledge artifact owned by a space."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from app.models.base import TimestampMixin, load_json, new_uuid


class SourceType(StrEnum):
    TEXT = "text"
    MEETING = "meeting"
    VOICE_NOTE = "voice_note"
    DOCUMENT = "document"
    UPLOAD = "upload"


class TranscriptionStatus(StrEnum):
    NONE = "none"
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


class Source(TimestampMixin, SQLModel, table=True):
    __tablename__ = "sources"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    space_id: uuid.UUID = Field(foreign_key="spaces.id", nullable=False, index=True)

    type: SourceType = Field(nullable=False)
    nom: str = Field(max_length=255, nullable=False)
    metadata_json: str = Field(
        default="{}", sa_column=Column(Text, nullable=False, server_default="{}"),
    )

    # Canonical text; NULL until the source is ready
    content: str | None = Field(default=None, sa_column=Column(Text))
    word_count: int = Field(default=0)

    summary: str | None = Field(default=None, sa_column=Column(Text))
    # JSON snapshot of the SummaryConfig used for `summary`
    summary_model_ref: str | None = Field(default=None, sa_column=Column(Text))
    summary_tokens_used: int = Field(default=0)

    # Transcription sub-state
    transcription_status: TranscriptionStatus = Field(
        default=TranscriptionStatus.NONE, index=True,
    )
    transcription_provider: str | None = Field(default=None, max_length=50)
    transcription_job_id: str | None = Field(default=None, max_length=255, index=True)
    transcription_submitted_at: datetime | None = Field(default=None)
    transcription_error: str | None = Field(default=None, max_length=2000)
    transcription_confidence: float | None = Field(default=None)
    duration_seconds: int | None = Field(default=None)
    speakers: str = Field(
        default="[]", sa_column=Column(Text, nullable=False, server_default="[]"),
    )

    # Storage metadata, opaque to the core
    file_key: str | None = Field(default=None, sa_column=Column(Text))
    file_size: int | None = Field(default=None)
    file_mime: str | None = Field(default=None, max_length=100)

    @property
    def is_ready(self) -> bool:
        return self.content is not None


# ── Pydantic schemas ─────────────────────────────────────────

class SourceCreate(SQLModel):
    type: SourceType
    nom: str = Field(min_length=1, max_length=255)
    content: str | None = None
    meta: dict = Field(default_factory=dict)
    file_key: str | None = None
    file_size: int | None = None
    file_mime: str | None = Field(default=None, max_length=100)
    duration_seconds: int | None = None


class SourceRead(SQLModel):
    id: uuid.UUID
    space_id: uuid.UUID
    type: SourceType
    nom: str
    meta: dict
    content: str | None = None
    word_count: int
    summary: str | None = None
    summary_model_ref: dict | None = None
    has_summary: bool
    transcription_status: TranscriptionStatus
    transcription_provider: str | None
    transcription_error: str | None
    duration_seconds: int | None
    speakers: list[str]
    file_key: str | None
    file_size: int | None
    file_mime: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_source(cls, src: Source, include_content: bool = True) -> "SourceRead":
        return cls(
            id=src.id,
            space_id=src.space_id,
            type=src.type,
            nom=src.nom,
            meta=load_json(src.metadata_json, {}),
            content=src.content if include_content else None,
            word_count=src.word_count,
            summary=src.summary if include_content else None,
            summary_model_ref=load_json(src.summary_model_ref, None),
            has_summary=src.summary is not None,
            transcription_status=src.transcription_status,
            transcription_provider=src.transcription_provider,
            transcription_error=src.transcription_error,
            duration_seconds=src.duration_seconds,
            speakers=load_json(src.speakers, []),
            file_key=src.file_key,
            file_size=src.file_size,
            file_mime=src.file_mime,
            created_at=src.created_at,
            updated_at=src.updated_at,
        )


class SourceStatusRead(SQLModel):
    id: uuid.UUID
    transcription_status: TranscriptionStatus
    ready: bool
    has_summary: bool
    transcription_error: str | None = None
    updated_at: datetime
