"""Transcription webhook tests for POST /v1/transcriptions/webhook."""

import pytest
from httpx import AsyncClient

from app.core.config import Settings, get_settings
from app.main import app
from app.models.source import SourceType, TranscriptionStatus


@pytest.fixture
def webhook_secret():
    app.dependency_overrides[get_settings] = lambda: Settings(transcription_webhook_secret="s3cret")
    yield "s3cret"
    app.dependency_overrides.pop(get_settings, None)


@pytest.fixture
async def submitted(add_source):
    return await add_source(
        nom="Weekly sync",
        content=None,
        type=SourceType.MEETING,
        status=TranscriptionStatus.PENDING,
        transcription_job_id="job-7",
        file_key="audio/weekly.mp3",
    )


@pytest.mark.asyncio
async def test_webhook_completes_source(client: AsyncClient, submitted, enqueue):
    resp = await client.post(
        "/v1/transcriptions/webhook",
        json={"job_id": "job-7", "text": "we approved the budget"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"applied": True, "status": "done"}

    src = (await client.get(f"/v1/sources/{submitted.id}")).json()
    assert src["transcription_status"] == "done"
    assert src["content"] == "we approved the budget"
    enqueue.assert_awaited_once_with("summarize_source_job", source_id=str(submitted.id))


@pytest.mark.asyncio
async def test_duplicate_delivery_is_acknowledged(client: AsyncClient, submitted, enqueue):
    body = {"job_id": "job-7", "text": "we approved the budget"}
    await client.post("/v1/transcriptions/webhook", json=body)
    resp = await client.post("/v1/transcriptions/webhook", json=body)

    assert resp.status_code == 200
    assert resp.json() == {"applied": False, "status": "done"}
    assert enqueue.await_count == 1


@pytest.mark.asyncio
async def test_unknown_job_is_acknowledged(client: AsyncClient):
    resp = await client.post("/v1/transcriptions/webhook", json={"job_id": "nope", "text": "x"})
    assert resp.status_code == 200
    assert resp.json() == {"applied": False, "status": None}


@pytest.mark.asyncio
async def test_malformed_bodies_are_400(client: AsyncClient):
    resp = await client.post(
        "/v1/transcriptions/webhook",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400

    resp = await client.post("/v1/transcriptions/webhook", json=["a", "list"])
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_webhook_token_is_checked(client: AsyncClient, submitted, webhook_secret):
    body = {"job_id": "job-7", "text": "we approved the budget"}

    resp = await client.post("/v1/transcriptions/webhook", json=body)
    assert resp.status_code == 401

    resp = await client.post("/v1/transcriptions/webhook", params={"token": "wrong"}, json=body)
    assert resp.status_code == 401

    resp = await client.post("/v1/transcriptions/webhook", params={"token": webhook_secret}, json=body)
    assert resp.status_code == 200
    assert resp.json()["applied"] is True
