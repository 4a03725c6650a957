"""Conversation endpoints — grounded chat over a space's sources."""

import uuid

from fastapi import APIRouter, status
from pydantic import BaseModel

from app.api.deps import AppSettings, Completion, Session, http_error
from app.core.config import Settings
from app.core.errors import MemoraError
from app.models.conversation import Conversation, ConversationCreate, ConversationRead
from app.models.message import MessageCreate, MessageRead
from app.services import orchestrator

router = APIRouter(tags=["conversations"])


class ConversationDetail(BaseModel):
    conversation: ConversationRead
    messages: list[MessageRead]


class ChatTurnRead(BaseModel):
    user_message: MessageRead
    reply: MessageRead


def _reply_options(settings: Settings) -> dict:
    return {
        "token_budget": settings.retrieval_token_budget,
        "max_sources": settings.retrieval_max_sources,
        "chars_per_token": settings.retrieval_chars_per_token,
        "max_tokens": settings.chat_max_tokens,
    }


@router.post(
    "/spaces/{space_id}/conversations",
    response_model=ConversationRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_conversation(
    space_id: uuid.UUID,
    body: ConversationCreate,
    session: Session,
) -> Conversation:
    """Create a conversation; the first message is optional."""
    try:
        return await orchestrator.create_conversation(session, space_id, body.message)
    except MemoraError as exc:
        raise http_error(exc) from exc


@router.get("/spaces/{space_id}/conversations", response_model=list[ConversationRead])
async def list_conversations(space_id: uuid.UUID, session: Session) -> list[Conversation]:
    return await orchestrator.list_conversations(session, space_id)


@router.get("/conversations/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(conversation_id: uuid.UUID, session: Session) -> ConversationDetail:
    try:
        messages = await orchestrator.list_messages(session, conversation_id)
    except MemoraError as exc:
        raise http_error(exc) from exc
    conversation = await session.get(Conversation, conversation_id)
    return ConversationDetail(
        conversation=ConversationRead.model_validate(conversation, from_attributes=True),
        messages=[MessageRead.from_message(m) for m in messages],
    )


@router.delete("/conversations/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(conversation_id: uuid.UUID, session: Session) -> None:
    try:
        await orchestrator.delete_conversation(session, conversation_id)
    except MemoraError as exc:
        raise http_error(exc) from exc


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
)
async def post_message(
    conversation_id: uuid.UUID,
    body: MessageCreate,
    session: Session,
) -> MessageRead:
    try:
        message = await orchestrator.post_user_message(session, conversation_id, body.message)
    except MemoraError as exc:
        raise http_error(exc) from exc
    return MessageRead.from_message(message)


@router.post("/conversations/{conversation_id}/reply", response_model=MessageRead)
async def generate_reply(
    conversation_id: uuid.UUID,
    session: Session,
    completion: Completion,
    settings: AppSettings,
    message_id: uuid.UUID | None = None,
) -> MessageRead:
    """Answer ``message_id``, or the latest user message when omitted.

    503 with Retry-After when generation fails.
    """
    try:
        reply = await orchestrator.generate_reply(
            session, conversation_id, completion,
            user_message_id=message_id, **_reply_options(settings),
        )
    except MemoraError as exc:
        raise http_error(exc) from exc
    return MessageRead.from_message(reply)


@router.post("/conversations/{conversation_id}/chat", response_model=ChatTurnRead)
async def chat(
    conversation_id: uuid.UUID,
    body: MessageCreate,
    session: Session,
    completion: Completion,
    settings: AppSettings,
) -> ChatTurnRead:
    """Post a user message and answer it."""
    try:
        turn = await orchestrator.chat(
            session, conversation_id, body.message, completion, **_reply_options(settings),
        )
    except MemoraError as exc:
        raise http_error(exc) from exc
    return ChatTurnRead(
        user_message=MessageRead.from_message(turn.user_message),
        reply=MessageRead.from_message(turn.reply),
    )
