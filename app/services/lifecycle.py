"""Source lifecycle — ingestion, transcription state machine, summarization.

Transcription sub-state moves strictly forward::

    pending ──started──▶ processing ──completed──▶ done
       │                     │
       └──────failed─────────┴──────────────────▶ error

``completed`` and ``failed`` are also accepted straight from ``pending``.
Every transition is a compare-and-set UPDATE guarded on the allowed source
states, so duplicate or out-of-order events (webhook retries, a poll racing
a callback) are no-ops instead of regressions.

Gateway failures stop here: transcription failures become ``error`` on the
source, summarization failures leave ``summary`` NULL and are only logged.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import InvalidRequestError, NotFoundError
from app.models.base import dump_json, utcnow
from app.models.source import (
    Source,
    SourceCreate,
    SourceStatusRead,
    SourceType,
    TranscriptionStatus,
)
from app.models.space import Space
from app.services.chunking import count_words, normalize_text
from app.services.completion import CompletionError, CompletionGateway
from app.services.search import invalidate_stats
from app.services.summarizer import (
    build_summary_prompt,
    parse_summary,
    render_summary,
    resolve_summary_config,
)
from app.services.transcription import (
    EventKind,
    TranscriptionError,
    TranscriptionEvent,
    TranscriptionGateway,
    resolve_audio_url,
)
from app.workers.queue import enqueue_job

logger = logging.getLogger(__name__)

Enqueue = Callable[..., Awaitable[object]]

IN_FLIGHT = (TranscriptionStatus.PENDING, TranscriptionStatus.PROCESSING)

_ALLOWED_FROM: dict[EventKind, tuple[TranscriptionStatus, ...]] = {
    EventKind.STARTED: (TranscriptionStatus.PENDING,),
    EventKind.COMPLETED: IN_FLIGHT,
    EventKind.FAILED: IN_FLIGHT,
}

MAX_ERROR_LENGTH = 2000


@dataclass(frozen=True)
class TransitionResult:
    source_id: uuid.UUID | None
    applied: bool
    status: TranscriptionStatus | None


# ── Creation ─────────────────────────────────────────────────

def requires_transcription(body: SourceCreate) -> bool:
    """True when the source's content can only come from transcribing audio."""
    if body.content and body.content.strip():
        return False
    if not body.file_key:
        return False
    if body.type in (SourceType.MEETING, SourceType.VOICE_NOTE):
        return True
    mime = (body.file_mime or "").lower()
    return body.type == SourceType.UPLOAD and mime.startswith(("audio/", "video/"))


async def create_source(
    session: AsyncSession,
    space_id: uuid.UUID,
    body: SourceCreate,
    enqueue: Enqueue | None = None,
) -> Source:
    """Persist a new source and schedule its follow-up work.

    Inline content makes the source ready at once (summarization follows).
    An audio file makes it ``pending`` and schedules submission to the
    transcription gateway; this call never waits on the gateway.
    """
    enqueue = enqueue or enqueue_job

    if await session.get(Space, space_id) is None:
        raise NotFoundError("Space", space_id)

    source = Source(
        space_id=space_id,
        type=body.type,
        nom=body.nom,
        metadata_json=dump_json(body.meta),
        file_key=body.file_key,
        file_size=body.file_size,
        file_mime=body.file_mime,
        duration_seconds=body.duration_seconds,
    )

    if body.content and body.content.strip():
        source.content = normalize_text(body.content)
        source.word_count = count_words(source.content)
    elif requires_transcription(body):
        source.transcription_status = TranscriptionStatus.PENDING
        source.transcription_submitted_at = utcnow()
    elif body.type in (SourceType.TEXT, SourceType.DOCUMENT):
        raise InvalidRequestError(f"content is required for {body.type} sources")
    # Anything else (an upload without audio or text) is stored as-is

    session.add(source)
    await session.commit()
    await session.refresh(source)
    invalidate_stats(space_id)

    logger.info(
        "Created %s source %s in space %s (transcription=%s, ready=%s)",
        source.type, source.id, space_id, source.transcription_status, source.is_ready,
    )

    if source.transcription_status == TranscriptionStatus.PENDING:
        await _safe_enqueue(enqueue, "submit_transcription", source_id=str(source.id))
    elif source.is_ready:
        await _safe_enqueue(enqueue, "summarize_source_job", source_id=str(source.id))
    return source


async def delete_source(session: AsyncSession, source_id: uuid.UUID) -> None:
    source = await session.get(Source, source_id)
    if source is None:
        raise NotFoundError("Source", source_id)
    space_id = source.space_id
    await session.delete(source)
    await session.commit()
    invalidate_stats(space_id)
    logger.info("Deleted source %s", source_id)


async def get_source_status(session: AsyncSession, source_id: uuid.UUID) -> SourceStatusRead:
    """Cheap, side-effect-free read for clients polling a source."""
    source = await session.get(Source, source_id)
    if source is None:
        raise NotFoundError("Source", source_id)
    return SourceStatusRead(
        id=source.id,
        transcription_status=source.transcription_status,
        ready=source.is_ready,
        has_summary=source.summary is not None,
        transcription_error=source.transcription_error,
        updated_at=source.updated_at,
    )


# ── Transcription state machine ──────────────────────────────

async def _compare_and_set(
    session: AsyncSession,
    source_id: uuid.UUID,
    allowed: tuple[TranscriptionStatus, ...],
    *conditions,
    **values,
) -> bool:
    stmt = (
        update(Source)
        .where(
            Source.id == source_id,
            Source.transcription_status.in_(allowed),  # type: ignore[attr-defined]
            *conditions,
        )
        .values(updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()
    return result.rowcount > 0


async def _apply(
    session: AsyncSession,
    source: Source,
    event: TranscriptionEvent,
    enqueue: Enqueue | None,
) -> TransitionResult:
    if event.kind is EventKind.COMPLETED and (
        event.payload is None or not event.payload.text.strip()
    ):
        event = TranscriptionEvent.failed(event.job_id, "empty transcript")

    allowed = _ALLOWED_FROM[event.kind]

    if event.kind is EventKind.STARTED:
        applied = await _compare_and_set(
            session, source.id, allowed,
            transcription_status=TranscriptionStatus.PROCESSING,
        )
    elif event.kind is EventKind.COMPLETED:
        payload = event.payload
        text = payload.text.strip()
        applied = await _compare_and_set(
            session, source.id, allowed,
            content=text,
            word_count=count_words(text),
            speakers=dump_json(payload.speakers),
            duration_seconds=payload.duration_seconds or source.duration_seconds,
            transcription_confidence=payload.confidence,
            transcription_status=TranscriptionStatus.DONE,
            transcription_error=None,
        )
    else:
        applied = await _compare_and_set(
            session, source.id, allowed,
            transcription_status=TranscriptionStatus.ERROR,
            transcription_error=(event.error or "transcription failed")[:MAX_ERROR_LENGTH],
        )

    await session.refresh(source)

    if not applied:
        logger.info(
            "Ignored %s event for source %s (status %s)",
            event.kind, source.id, source.transcription_status,
        )
        return TransitionResult(source.id, False, source.transcription_status)

    invalidate_stats(source.space_id)
    logger.info("Source %s transcription → %s", source.id, source.transcription_status)

    if event.kind is EventKind.COMPLETED:
        await _safe_enqueue(enqueue or enqueue_job, "summarize_source_job", source_id=str(source.id))
    return TransitionResult(source.id, True, source.transcription_status)


async def apply_transcription_event(
    session: AsyncSession,
    event: TranscriptionEvent,
    enqueue: Enqueue | None = None,
) -> TransitionResult:
    """Feed a gateway event (webhook or poll) into the state machine."""
    stmt = select(Source).where(Source.transcription_job_id == event.job_id)
    source = (await session.execute(stmt)).scalars().first()
    if source is None:
        logger.warning("Transcription %s event for unknown job %s", event.kind, event.job_id)
        return TransitionResult(None, False, None)
    return await _apply(session, source, event, enqueue)


async def fail_transcription(
    session: AsyncSession,
    source: Source,
    reason: str,
) -> TransitionResult:
    event = TranscriptionEvent.failed(source.transcription_job_id or "", reason)
    return await _apply(session, source, event, None)


async def submit_transcription(
    session: AsyncSession,
    source_id: uuid.UUID,
    gateway: TranscriptionGateway,
    file_base_url: str = "",
    enqueue: Enqueue | None = None,
) -> TransitionResult:
    """Hand a pending source to the gateway, then take a first poll.

    Idempotent: a source that already has a job, or left ``pending``, is
    left alone.
    """
    source = await session.get(Source, source_id)
    if source is None:
        raise NotFoundError("Source", source_id)
    if source.transcription_status != TranscriptionStatus.PENDING or source.transcription_job_id:
        logger.info("Source %s already submitted (status %s)", source.id, source.transcription_status)
        return TransitionResult(source.id, False, source.transcription_status)

    if not source.file_key:
        return await fail_transcription(session, source, "no audio file attached")

    try:
        audio_url = resolve_audio_url(source.file_key, file_base_url)
        job_id = await gateway.submit(audio_url)
    except TranscriptionError as exc:
        logger.warning("Transcription submission failed for source %s: %s", source.id, exc)
        return await fail_transcription(session, source, f"submission failed: {exc}")

    recorded = await _compare_and_set(
        session, source.id, (TranscriptionStatus.PENDING,),
        Source.transcription_job_id.is_(None),  # type: ignore[union-attr]
        transcription_job_id=job_id,
        transcription_provider=gateway.provider,
    )
    await session.refresh(source)
    if not recorded:
        logger.warning("Source %s changed while submitting job %s", source.id, job_id)
        return TransitionResult(source.id, False, source.transcription_status)

    logger.info("Source %s submitted to %s as job %s", source.id, gateway.provider, job_id)
    return await poll_transcription(session, source, gateway, enqueue)


async def poll_transcription(
    session: AsyncSession,
    source: Source,
    gateway: TranscriptionGateway,
    enqueue: Enqueue | None = None,
) -> TransitionResult:
    """Ask the gateway about a job; a failed poll is not a failed job."""
    job_id = source.transcription_job_id
    if not job_id:
        return TransitionResult(source.id, False, source.transcription_status)

    try:
        poll = await gateway.poll_status(job_id)
    except TranscriptionError as exc:
        logger.warning("Poll failed for job %s (source %s): %s", job_id, source.id, exc)
        return TransitionResult(source.id, False, source.transcription_status)

    event = TranscriptionEvent.from_poll(job_id, poll)
    if event is None:
        return TransitionResult(source.id, False, source.transcription_status)
    return await _apply(session, source, event, enqueue)


async def in_flight_sources(session: AsyncSession) -> list[Source]:
    stmt = select(Source).where(
        Source.transcription_status.in_(IN_FLIGHT),  # type: ignore[attr-defined]
    )
    return list((await session.execute(stmt)).scalars().all())


async def expire_stale_transcriptions(
    session: AsyncSession,
    max_age_seconds: int,
    now: datetime | None = None,
) -> list[uuid.UUID]:
    """Fail every in-flight job submitted more than ``max_age_seconds`` ago."""
    cutoff = (now or utcnow()) - timedelta(seconds=max_age_seconds)
    stmt = select(Source).where(
        Source.transcription_status.in_(IN_FLIGHT),  # type: ignore[attr-defined]
        Source.transcription_submitted_at < cutoff,  # type: ignore[operator]
    )
    stale = list((await session.execute(stmt)).scalars().all())

    expired: list[uuid.UUID] = []
    for source in stale:
        result = await fail_transcription(
            session, source, f"no transcript received within {max_age_seconds}s",
        )
        if result.applied:
            expired.append(source.id)
    if expired:
        logger.warning("Expired %d stale transcription jobs", len(expired))
    return expired


# ── Summarization ────────────────────────────────────────────

async def summarize_source(
    session: AsyncSession,
    source_id: uuid.UUID,
    completion: CompletionGateway,
    model_id: uuid.UUID | None = None,
    max_tokens: int = 2000,
    language: str = "fr",
) -> bool:
    """Generate and store a summary; False (and nothing stored) on any failure."""
    source = await session.get(Source, source_id)
    if source is None:
        logger.warning("Cannot summarize missing source %s", source_id)
        return False
    if not source.is_ready:
        logger.info("Source %s has no content yet, skipping summary", source_id)
        return False

    config = await resolve_summary_config(session, source.space_id, model_id, language)
    prompt = build_summary_prompt(source.content, source.nom, config)

    try:
        result = await completion.complete(prompt, max_tokens=max_tokens)
    except CompletionError as exc:
        logger.warning("Summary generation failed for source %s: %s", source_id, exc)
        return False

    parsed = parse_summary(result.text, config)
    if parsed is None:
        logger.warning("Discarded unparsable summary for source %s", source_id)
        return False

    stmt = (
        update(Source)
        .where(Source.id == source.id, Source.content.is_not(None))  # type: ignore[union-attr]
        .values(
            summary=render_summary(parsed),
            summary_model_ref=dump_json(config.snapshot()),
            summary_tokens_used=result.tokens_used,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    written = (await session.execute(stmt)).rowcount > 0
    await session.commit()
    if written:
        await session.refresh(source)
        invalidate_stats(source.space_id)
        logger.info(
            "Summarized source %s with %r (%d tokens)", source_id, config.name, result.tokens_used,
        )
    return written


async def _safe_enqueue(enqueue: Enqueue, function: str, **kwargs) -> None:
    """Enqueue a follow-up job. Queue errors are logged, never raised."""
    try:
        await enqueue(function, **kwargs)
    except Exception:
        logger.exception("Failed to enqueue %s(%s)", function, kwargs)
