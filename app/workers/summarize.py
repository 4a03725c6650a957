"""Summarization job — runs after a source becomes ready, or on demand."""

from __future__ import annotations

import logging
import uuid

from app.core.database import async_session_factory
from app.services.lifecycle import summarize_source

logger = logging.getLogger(__name__)


async def summarize_source_job(ctx: dict, source_id: str, model_id: str | None = None) -> dict:
    """ARQ task: generate a source's summary.

    Never fails the job: a summary that cannot be produced leaves the source
    without one, and the request can simply be repeated.
    """
    settings = ctx["settings"]
    async with async_session_factory() as session:
        try:
            ok = await summarize_source(
                session,
                uuid.UUID(source_id),
                ctx["completion"],
                model_id=uuid.UUID(model_id) if model_id else None,
                max_tokens=settings.summary_max_tokens,
                language=settings.summary_language,
            )
        except Exception as exc:
            logger.exception("Summarization crashed for source %s", source_id)
            return {"summarized": False, "error": str(exc)[:500]}

    return {"summarized": ok}
