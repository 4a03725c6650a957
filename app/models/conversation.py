"""Conversation model — a chat thread scoped to one space."""

import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, new_uuid

FIRST_MESSAGE_MAX_CHARS = 200


class Conversation(TimestampMixin, SQLModel, table=True):
    __tablename__ = "conversations"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    space_id: uuid.UUID = Field(foreign_key="spaces.id", nullable=False, index=True)

    # Denormalized for listings: excerpt of the first user message
    first_message: str | None = Field(default=None, max_length=FIRST_MESSAGE_MAX_CHARS)
    message_count: int = Field(default=0)
    # Lease held while a reply is being generated, shared by every worker process
    reply_started_at: datetime | None = Field(default=None)


# ── Pydantic schemas ─────────────────────────────────────────

class ConversationCreate(SQLModel):
    message: str | None = Field(default=None, max_length=32000)


class ConversationRead(SQLModel):
    id: uuid.UUID
    space_id: uuid.UUID
    first_message: str | None
    message_count: int
    created_at: datetime
    updated_at: datetime
