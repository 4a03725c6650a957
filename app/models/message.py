"""Message model — a single turn in a Conversation."""

import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel
from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from app.models.base import TimestampMixin, load_json, new_uuid


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class SourceReference(BaseModel):
    """Provenance: one source excerpt an assistant answer drew on."""

    source_id: uuid.UUID
    nom: str
    type: str
    extrait: str


class Message(TimestampMixin, SQLModel, table=True):
    __tablename__ = "messages"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    conversation_id: uuid.UUID = Field(
        foreign_key="conversations.id", nullable=False, index=True,
    )
    # Position within the conversation, 1-based; orders messages created in the same tick
    seq: int = Field(nullable=False)

    role: MessageRole = Field(nullable=False)
    content: str = Field(sa_column=Column(Text, nullable=False))

    # JSON array of SourceReference; always [] for user messages
    sources_used: str = Field(
        default="[]", sa_column=Column(Text, nullable=False, server_default="[]"),
    )
    tokens_used: int = Field(default=0)

    # Assistant messages only: the user message this one answers
    reply_to: uuid.UUID | None = Field(default=None, foreign_key="messages.id", index=True)

    @property
    def references(self) -> list[SourceReference]:
        return [SourceReference.model_validate(r) for r in load_json(self.sources_used, [])]


# ── Pydantic schemas ─────────────────────────────────────────

class MessageCreate(SQLModel):
    message: str = Field(min_length=1, max_length=32000)


class MessageRead(SQLModel):
    id: uuid.UUID
    conversation_id: uuid.UUID
    role: MessageRole
    content: str
    sources_used: list[SourceReference]
    tokens_used: int
    reply_to: uuid.UUID | None = None
    created_at: datetime

    @classmethod
    def from_message(cls, m: Message) -> "MessageRead":
        return cls(
            id=m.id,
            conversation_id=m.conversation_id,
            role=m.role,
            content=m.content,
            sources_used=m.references,
            tokens_used=m.tokens_used,
            reply_to=m.reply_to,
            created_at=m.created_at,
        )
