"""Transcription jobs — submit pending sources, sweep in-flight ones.

``ctx`` carries the worker's gateways (see ``app.workers.main.startup``):
``ctx["transcription"]`` and ``ctx["settings"]``; ``ctx["redis"]`` is the
ArqRedis pool ARQ injects, used to enqueue follow-up summarization.
"""

from __future__ import annotations

import logging
import uuid

from app.core.database import async_session_factory
from app.core.errors import NotFoundError
from app.models.source import Source
from app.services import lifecycle

logger = logging.getLogger(__name__)


async def submit_transcription(ctx: dict, source_id: str) -> dict:
    """ARQ task: send a pending source's audio to the transcription gateway."""
    settings = ctx["settings"]
    async with async_session_factory() as session:
        try:
            result = await lifecycle.submit_transcription(
                session,
                uuid.UUID(source_id),
                ctx["transcription"],
                file_base_url=settings.file_base_url,
                enqueue=ctx["redis"].enqueue_job,
            )
        except NotFoundError:
            logger.error("Source %s vanished before transcription submit", source_id)
            return {"error": "source_not_found"}

    return {"applied": result.applied, "status": str(result.status)}


async def sweep_transcriptions(ctx: dict) -> dict:
    """Periodic job: expire jobs past the age ceiling, then poll the rest.

    The sweep is the polling half of the webhook/poll pair; it is the only
    path through which a poll can advance a source.
    """
    settings = ctx["settings"]
    gateway = ctx["transcription"]
    enqueue = ctx["redis"].enqueue_job
    advanced = 0
    failed = 0

    async with async_session_factory() as session:
        expired = await lifecycle.expire_stale_transcriptions(
            session, settings.transcription_max_age_seconds,
        )
        in_flight = [s.id for s in await lifecycle.in_flight_sources(session) if s.transcription_job_id]
        for source_id in in_flight:
            # Re-read per source: a rollback below expires everything loaded so far
            source = await session.get(Source, source_id)
            if source is None:
                continue
            try:
                result = await lifecycle.poll_transcription(session, source, gateway, enqueue)
            except Exception:
                # One broken job must not stall every other in-flight source
                logger.exception("Sweep failed on source %s (job %s)", source.id, source.transcription_job_id)
                await session.rollback()
                failed += 1
                continue
            if result.applied:
                advanced += 1

    if expired or advanced or failed:
        logger.info(
            "Transcription sweep: %d expired, %d advanced, %d failed",
            len(expired), advanced, failed,
        )
    return {"expired": len(expired), "advanced": advanced, "failed": failed}
