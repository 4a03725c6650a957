"""Import all models so SQLModel.metadata picks them up."""

from app.models.conversation import Conversation, ConversationCreate, ConversationRead
from app.models.message import (
    Message,
    MessageCreate,
    MessageRead,
    MessageRole,
    SourceReference,
)
from app.models.source import (
    Source,
    SourceCreate,
    SourceRead,
    SourceStatusRead,
    SourceType,
    TranscriptionStatus,
)
from app.models.space import Space, SpaceCreate, SpaceRead
from app.models.summary_model import (
    SummaryModel,
    SummaryModelCreate,
    SummaryModelRead,
    SummarySection,
    SummaryTone,
)

__all__ = [
    "Conversation",
    "ConversationCreate",
    "ConversationRead",
    "Message",
    "MessageCreate",
    "MessageRead",
    "MessageRole",
    "Source",
    "SourceCreate",
    "SourceRead",
    "SourceReference",
    "SourceStatusRead",
    "SourceType",
    "Space",
    "SpaceCreate",
    "SpaceRead",
    "SummaryModel",
    "SummaryModelCreate",
    "SummaryModelRead",
    "SummarySection",
    "SummaryTone",
    "TranscriptionStatus",
]
