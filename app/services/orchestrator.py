"""Conversation orchestrator — grounded chat over a space's sources.

Flow of a reply:
  1. Take the user message being answered (the latest by default) as the query
  2. Build a budgeted context from the space's ready sources
  3. Assemble system prompt + context + bounded history + question
  4. Call the completion gateway
  5. Append the assistant message, citing exactly the retrieved excerpts

Messages are append-only and every assistant message points at the user
message it answers (``reply_to``); a user message is answered at most once.
At most one reply is generated at a time per conversation: an asyncio lock
serializes callers within a process, and a lease on the conversation row
(``reply_started_at``) serializes worker processes sharing the database.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
import weakref
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import delete, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import InvalidRequestError, NotFoundError, ReplyGenerationError
from app.models.base import dump_json, utcnow
from app.models.conversation import FIRST_MESSAGE_MAX_CHARS, Conversation
from app.models.message import Message, MessageRole, SourceReference
from app.models.space import Space
from app.services.completion import CompletionError, CompletionGateway
from app.services.retrieval import (
    DEFAULT_CHARS_PER_TOKEN,
    DEFAULT_MAX_SOURCES,
    DEFAULT_TOKEN_BUDGET,
    RetrievalContext,
    build_context,
)

logger = logging.getLogger(__name__)

# Maximum conversation history turns to include
MAX_HISTORY_TURNS = 10
DEFAULT_MAX_TOKENS = 2048

SYSTEM_PROMPT = (
    "You are Memora, an assistant that answers questions using the user's own "
    "sources: meeting transcripts, voice notes, notes and documents. "
    "Answer in the language of the user's question. Rely on the sources given "
    "below and refer to them by their bracketed number. When they do not "
    "contain the answer, say so plainly instead of guessing."
)

# A reply lease older than this is considered abandoned (outlives the completion timeout)
REPLY_LEASE_SECONDS = 180
# How long a caller waits for another process to finish its reply
REPLY_WAIT_SECONDS = 90
REPLY_POLL_SECONDS = 0.5

# Entries vanish once no caller holds or awaits the lock
_locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = weakref.WeakValueDictionary()


@dataclass
class ChatTurn:
    """A user message and the reply generated for it."""
    user_message: Message
    reply: Message


def _lock_for(conversation_id: uuid.UUID) -> asyncio.Lock:
    lock = _locks.get(conversation_id)
    if lock is None:
        lock = asyncio.Lock()
        _locks[conversation_id] = lock
    return lock


async def _get_or_404(session: AsyncSession, conversation_id: uuid.UUID) -> Conversation:
    conversation = await session.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation", conversation_id)
    return conversation


async def _append(
    session: AsyncSession,
    conversation: Conversation,
    role: MessageRole,
    content: str,
    references: Sequence[SourceReference] = (),
    tokens_used: int = 0,
    reply_to: uuid.UUID | None = None,
) -> Message:
    """Append one message and bump ``message_count`` in the same commit."""
    seq = (await session.execute(
        update(Conversation)
        .where(Conversation.id == conversation.id)
        .values(message_count=Conversation.message_count + 1, updated_at=utcnow())
        .returning(Conversation.message_count)
        .execution_options(synchronize_session=False)
    )).scalar_one()

    if role == MessageRole.USER:
        await session.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id, Conversation.first_message.is_(None))  # type: ignore[union-attr]
            .values(first_message=content[:FIRST_MESSAGE_MAX_CHARS])
            .execution_options(synchronize_session=False)
        )

    message = Message(
        conversation_id=conversation.id,
        seq=seq,
        role=role,
        content=content,
        sources_used=dump_json([r.model_dump(mode="json") for r in references]),
        tokens_used=tokens_used,
        reply_to=reply_to,
    )
    session.add(message)
    await session.commit()
    await session.refresh(message)
    await session.refresh(conversation)
    return message


# ── Conversations ────────────────────────────────────────────

async def create_conversation(
    session: AsyncSession,
    space_id: uuid.UUID,
    first_message: str | None = None,
) -> Conversation:
    """Create a conversation, optionally with its first user message."""
    if await session.get(Space, space_id) is None:
        raise NotFoundError("Space", space_id)

    conversation = Conversation(space_id=space_id)
    session.add(conversation)
    await session.commit()
    await session.refresh(conversation)
    logger.info("Created conversation %s in space %s", conversation.id, space_id)

    if first_message and first_message.strip():
        await post_user_message(session, conversation.id, first_message)
    return conversation


async def list_conversations(session: AsyncSession, space_id: uuid.UUID) -> list[Conversation]:
    stmt = (
        select(Conversation)
        .where(Conversation.space_id == space_id)
        .order_by(Conversation.updated_at.desc())  # type: ignore[attr-defined]
    )
    return list((await session.execute(stmt)).scalars().all())


async def list_messages(session: AsyncSession, conversation_id: uuid.UUID) -> list[Message]:
    await _get_or_404(session, conversation_id)
    stmt = (
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.seq, Message.created_at)
    )
    return list((await session.execute(stmt)).scalars().all())


async def delete_conversation(session: AsyncSession, conversation_id: uuid.UUID) -> None:
    conversation = await _get_or_404(session, conversation_id)
    await session.execute(delete(Message).where(Message.conversation_id == conversation_id))
    await session.delete(conversation)
    await session.commit()
    logger.info("Deleted conversation %s", conversation_id)


# ── Turns ────────────────────────────────────────────────────

async def post_user_message(
    session: AsyncSession,
    conversation_id: uuid.UUID,
    text: str,
) -> Message:
    """Append a user message. No retrieval, no generation."""
    content = (text or "").strip()
    if not content:
        raise InvalidRequestError("message must not be empty")
    conversation = await _get_or_404(session, conversation_id)
    return await _append(session, conversation, MessageRole.USER, content)


async def _claim_reply_lease(session: AsyncSession, conversation_id: uuid.UUID) -> None:
    """Take the conversation's reply lease, waiting while another process holds it."""
    deadline = time.monotonic() + REPLY_WAIT_SECONDS
    while True:
        now = utcnow()
        result = await session.execute(
            update(Conversation)
            .where(
                Conversation.id == conversation_id,
                or_(
                    Conversation.reply_started_at.is_(None),  # type: ignore[union-attr]
                    Conversation.reply_started_at < now - timedelta(seconds=REPLY_LEASE_SECONDS),  # type: ignore[operator]
                ),
            )
            .values(reply_started_at=now)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        if result.rowcount:
            return
        if time.monotonic() >= deadline:
            raise ReplyGenerationError("another reply is still being generated, please retry")
        await asyncio.sleep(REPLY_POLL_SECONDS)


async def _release_reply_lease(session: AsyncSession, conversation_id: uuid.UUID) -> None:
    await session.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(reply_started_at=None)
        .execution_options(synchronize_session=False)
    )
    await session.commit()


def _question(messages: Sequence[Message], user_message_id: uuid.UUID | None) -> Message:
    asked = [m for m in messages if m.role == MessageRole.USER]
    if user_message_id is None:
        if not asked:
            raise InvalidRequestError("conversation has no user message to answer")
        return asked[-1]
    for message in asked:
        if message.id == user_message_id:
            return message
    raise NotFoundError("Message", user_message_id)


async def generate_reply(
    session: AsyncSession,
    conversation_id: uuid.UUID,
    completion: CompletionGateway,
    user_message_id: uuid.UUID | None = None,
    token_budget: int = DEFAULT_TOKEN_BUDGET,
    max_sources: int = DEFAULT_MAX_SOURCES,
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> Message:
    """Answer a user message: ``user_message_id``, or else the latest one.

    A message that already has a reply gets that reply back; nothing is
    generated twice for the same question.

    Raises:
        ReplyGenerationError: the completion gateway failed, or another
            process kept the conversation busy; nothing was stored and the
            call may be retried.
    """
    async with _lock_for(conversation_id):
        conversation = await _get_or_404(session, conversation_id)
        await _claim_reply_lease(session, conversation_id)
        try:
            return await _answer(
                session, conversation, completion, user_message_id,
                token_budget, max_sources, chars_per_token, max_tokens,
            )
        finally:
            await _release_reply_lease(session, conversation_id)


async def _answer(
    session: AsyncSession,
    conversation: Conversation,
    completion: CompletionGateway,
    user_message_id: uuid.UUID | None,
    token_budget: int,
    max_sources: int,
    chars_per_token: int,
    max_tokens: int,
) -> Message:
    messages = await list_messages(session, conversation.id)
    question = _question(messages, user_message_id)

    existing = next((m for m in messages if m.reply_to == question.id), None)
    if existing is not None:
        return existing

    context = await build_context(
        session,
        conversation.space_id,
        question.content,
        token_budget=token_budget,
        max_sources=max_sources,
        chars_per_token=chars_per_token,
    )
    history = [m for m in messages if m.seq < question.seq]
    prompt = _build_messages(context, history, question.content)

    try:
        result = await completion.complete(prompt, max_tokens=max_tokens)
    except CompletionError as exc:
        logger.warning("Reply generation failed for conversation %s: %s", conversation.id, exc)
        raise ReplyGenerationError("reply generation failed, please retry") from exc

    reply = await _append(
        session,
        conversation,
        MessageRole.ASSISTANT,
        result.text,
        references=context.excerpts,
        tokens_used=result.tokens_used,
        reply_to=question.id,
    )
    logger.info(
        "Replied to message %s in conversation %s citing %d sources (%d tokens)",
        question.id, conversation.id, len(context.excerpts), result.tokens_used,
    )
    return reply


async def chat(
    session: AsyncSession,
    conversation_id: uuid.UUID,
    text: str,
    completion: CompletionGateway,
    **options,
) -> ChatTurn:
    """Post a user message and answer that very message."""
    user_message = await post_user_message(session, conversation_id, text)
    reply = await generate_reply(
        session, conversation_id, completion, user_message_id=user_message.id, **options,
    )
    return ChatTurn(user_message=user_message, reply=reply)


def _build_messages(
    context: RetrievalContext,
    history: Sequence[Message],
    user_message: str,
) -> list[dict]:
    """Assemble the message array for the completion call."""
    messages: list[dict] = [{
        "role": "system",
        "content": f"{SYSTEM_PROMPT}\n\n---\n{context.prompt_block}\n---",
    }]

    # Conversation history (trim to last N turns)
    for msg in history[-MAX_HISTORY_TURNS * 2:]:  # 2 messages per turn
        messages.append({"role": str(msg.role), "content": msg.content})

    messages.append({"role": "user", "content": user_message})
    return messages
