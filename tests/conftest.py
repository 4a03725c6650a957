"""Shared test fixtures — async SQLite file DB, fake gateways, test client."""

import asyncio
from collections.abc import AsyncGenerator
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

# Import all models so metadata is populated
import app.models  # noqa: F401
from app.core import cache
from app.core.database import get_session
from app.main import app
from app.models.base import dump_json
from app.models.source import Source, SourceType, TranscriptionStatus
from app.models.space import Space
from app.services import orchestrator
from app.services.completion import Completion, CompletionError
from app.services.transcription import (
    JobState,
    TranscriptionEvent,
    TranscriptionPoll,
    TranscriptPayload,
)


class FakeCompletion:
    """CompletionGateway returning canned replies (or failing)."""

    def __init__(self, replies: list[str] | None = None, error: Exception | None = None) -> None:
        self.replies = list(replies or [])
        self.error = error
        self.calls: list = []

    async def complete(self, prompt, max_tokens: int) -> Completion:
        self.calls.append(prompt)
        # Yield so concurrent callers really interleave
        await asyncio.sleep(0.01)
        if self.error is not None:
            raise self.error
        text = self.replies.pop(0) if self.replies else "Here is what your sources say."
        return Completion(text=text, tokens_used=42, model="fake-model")


class FakeTranscription:
    """TranscriptionGateway with scripted polls."""

    provider = "fake"

    def __init__(self) -> None:
        self.submitted: list[str] = []
        self.polls: dict[str, TranscriptionPoll] = {}
        self.submit_error: Exception | None = None
        self.poll_error: Exception | None = None

    async def submit(self, audio_url: str) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(audio_url)
        return f"job-{len(self.submitted)}"

    async def poll_status(self, job_id: str) -> TranscriptionPoll:
        if self.poll_error is not None:
            raise self.poll_error
        return self.polls.get(job_id, TranscriptionPoll(state=JobState.QUEUED))

    def parse_callback(self, body: dict) -> TranscriptionEvent:
        return TranscriptionEvent.completed(body["job_id"], TranscriptPayload(text=body["text"]))


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def test_session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(test_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as sess:
        yield sess


@pytest.fixture(autouse=True)
def _isolate_process_state():
    cache.clear()
    orchestrator._locks.clear()
    yield
    cache.clear()
    orchestrator._locks.clear()


@pytest.fixture(autouse=True)
def enqueue():
    """Replace the ARQ queue everywhere; tests inspect the mock."""
    mock = AsyncMock()
    with (
        patch("app.services.lifecycle.enqueue_job", mock),
        patch("app.api.v1.sources.enqueue_job", mock),
    ):
        yield mock


@pytest.fixture
def completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def transcription() -> FakeTranscription:
    return FakeTranscription()


@pytest.fixture
async def client(test_session_factory, completion, transcription) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client with DB session and gateway overrides."""

    async def _override_session():
        async with test_session_factory() as sess:
            yield sess

    app.dependency_overrides[get_session] = _override_session
    app.state.completion = completion
    app.state.transcription = transcription

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def space(session) -> Space:
    sp = Space(nom="Finance")
    session.add(sp)
    await session.commit()
    await session.refresh(sp)
    return sp


@pytest.fixture
def add_source(session, space):
    """Factory inserting a source directly, bypassing the lifecycle."""

    async def _add(
        nom: str = "Notes",
        content: str | None = "Some content.",
        summary: str | None = None,
        type: SourceType = SourceType.TEXT,
        status: TranscriptionStatus = TranscriptionStatus.NONE,
        updated_at: datetime | None = None,
        space_id=None,
        **fields,
    ) -> Source:
        src = Source(
            space_id=space_id or space.id,
            type=type,
            nom=nom,
            content=content,
            word_count=len(content.split()) if content else 0,
            summary=summary,
            transcription_status=status,
            speakers=dump_json([]),
            **fields,
        )
        if updated_at is not None:
            src.updated_at = updated_at
        session.add(src)
        await session.commit()
        await session.refresh(src)
        return src

    return _add
