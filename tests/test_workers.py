"""Tests for the ARQ job functions, with the queue and gateways faked."""

import json
import uuid
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.config import Settings
from app.models.base import utcnow
from app.models.source import Source, SourceType, TranscriptionStatus
from app.services.completion import CompletionError
from app.services.transcription import JobState, TranscriptionPoll, TranscriptPayload
from app.workers.main import WorkerSettings
from app.workers.summarize import summarize_source_job
from app.workers.transcribe import submit_transcription, sweep_transcriptions


@pytest.fixture
def ctx(completion, transcription) -> dict:
    redis = MagicMock()
    redis.enqueue_job = AsyncMock()
    return {
        "settings": Settings(file_base_url="https://files.example", transcription_max_age_seconds=3600),
        "completion": completion,
        "transcription": transcription,
        "redis": redis,
    }


@pytest.fixture
def workers_db(test_session_factory):
    with (
        patch("app.workers.transcribe.async_session_factory", test_session_factory),
        patch("app.workers.summarize.async_session_factory", test_session_factory),
    ):
        yield


async def _audio_source(add_source, **fields) -> Source:
    return await add_source(
        nom="Call", content=None, type=SourceType.MEETING,
        status=fields.pop("status", TranscriptionStatus.PENDING),
        transcription_submitted_at=fields.pop("submitted_at", utcnow()),
        file_key="audio/call.mp3",
        **fields,
    )


def test_worker_registers_jobs():
    names = {f.__name__ for f in WorkerSettings.functions}
    assert names == {"submit_transcription", "summarize_source_job"}
    assert len(WorkerSettings.cron_jobs) == 1


@pytest.mark.asyncio
async def test_submit_job_transcribes_and_chains_summary(
    ctx, workers_db, add_source, transcription, test_session_factory,
):
    src = await _audio_source(add_source)
    transcription.polls["job-1"] = TranscriptionPoll(
        JobState.COMPLETED, TranscriptPayload(text="we approved the budget"),
    )

    result = await submit_transcription(ctx, str(src.id))

    assert result == {"applied": True, "status": "done"}
    assert transcription.submitted == ["https://files.example/audio/call.mp3"]
    ctx["redis"].enqueue_job.assert_awaited_once_with("summarize_source_job", source_id=str(src.id))
    async with test_session_factory() as s:
        stored = await s.get(Source, src.id)
        assert stored.content == "we approved the budget"
        assert stored.transcription_job_id == "job-1"


@pytest.mark.asyncio
async def test_submit_job_leaves_queued_job_pending(ctx, workers_db, add_source, test_session_factory):
    src = await _audio_source(add_source)

    result = await submit_transcription(ctx, str(src.id))

    assert result == {"applied": False, "status": "pending"}
    async with test_session_factory() as s:
        assert (await s.get(Source, src.id)).transcription_job_id == "job-1"


@pytest.mark.asyncio
async def test_submit_job_for_missing_source(ctx, workers_db):
    assert await submit_transcription(ctx, str(uuid.uuid4())) == {"error": "source_not_found"}


@pytest.mark.asyncio
async def test_sweep_expires_and_polls(ctx, workers_db, add_source, transcription, test_session_factory):
    stale = await _audio_source(add_source, transcription_job_id="job-old", submitted_at=datetime(2024, 1, 1))
    running = await _audio_source(
        add_source, transcription_job_id="job-run", status=TranscriptionStatus.PROCESSING,
    )
    unsubmitted = await _audio_source(add_source)
    transcription.polls["job-run"] = TranscriptionPoll(
        JobState.COMPLETED, TranscriptPayload(text="done at last"),
    )

    result = await sweep_transcriptions(ctx)

    assert result == {"expired": 1, "advanced": 1, "failed": 0}
    async with test_session_factory() as s:
        assert (await s.get(Source, stale.id)).transcription_status == TranscriptionStatus.ERROR
        assert (await s.get(Source, running.id)).transcription_status == TranscriptionStatus.DONE
        assert (await s.get(Source, unsubmitted.id)).transcription_status == TranscriptionStatus.PENDING
    ctx["redis"].enqueue_job.assert_awaited_once_with("summarize_source_job", source_id=str(running.id))


@pytest.mark.asyncio
async def test_sweep_survives_a_broken_job(ctx, workers_db, add_source, transcription, test_session_factory):
    broken = await _audio_source(add_source, transcription_job_id="job-bad")
    healthy = await _audio_source(add_source, transcription_job_id="job-good")
    good_poll = TranscriptionPoll(JobState.COMPLETED, TranscriptPayload(text="all fine"))

    async def poll_status(job_id):
        if job_id == "job-bad":
            raise RuntimeError("unexpected provider payload")
        return good_poll

    transcription.poll_status = poll_status

    result = await sweep_transcriptions(ctx)

    assert result == {"expired": 0, "advanced": 1, "failed": 1}
    async with test_session_factory() as s:
        assert (await s.get(Source, broken.id)).transcription_status == TranscriptionStatus.PENDING
        assert (await s.get(Source, healthy.id)).transcription_status == TranscriptionStatus.DONE


@pytest.mark.asyncio
async def test_summarize_job(ctx, workers_db, add_source, completion, test_session_factory):
    src = await add_source(content="we approved the budget")
    completion.replies = [json.dumps({"summary": "Budget approved.", "keyPoints": ["Budget"]})]

    assert await summarize_source_job(ctx, str(src.id)) == {"summarized": True}
    async with test_session_factory() as s:
        assert (await s.get(Source, src.id)).summary.startswith("Budget approved.")


@pytest.mark.asyncio
async def test_summarize_job_never_raises(ctx, workers_db, add_source, completion):
    src = await add_source(content="we approved the budget")

    completion.error = CompletionError("provider down")
    assert await summarize_source_job(ctx, str(src.id)) == {"summarized": False}

    completion.error = RuntimeError("boom")
    assert await summarize_source_job(ctx, str(src.id)) == {"summarized": False, "error": "boom"}
