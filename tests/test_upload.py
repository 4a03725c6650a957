"""Upload endpoint tests for POST /v1/spaces/{space_id}/sources/upload."""

import pytest
from httpx import AsyncClient

SRT = b"""1
00:00:01,000 --> 00:00:03,000
We approved the budget.

2
00:00:04,000 --> 00:00:06,500
Next item is hiring.
"""


async def _space(client: AsyncClient) -> str:
    resp = await client.post("/v1/spaces", json={"nom": "Uploads"})
    assert resp.status_code == 201
    return resp.json()["id"]


@pytest.mark.asyncio
async def test_upload_txt_file(client: AsyncClient, enqueue):
    """Uploading a .txt file creates a ready document source."""
    space_id = await _space(client)

    resp = await client.post(
        f"/v1/spaces/{space_id}/sources/upload",
        files={"file": ("notes.txt", b"Hello from upload", "text/plain")},
    )
    assert resp.status_code == 201
    src = resp.json()
    assert src["type"] == "document"
    assert src["nom"] == "notes.txt"
    assert src["content"] == "Hello from upload"
    assert src["transcription_status"] == "none"
    assert src["meta"] == {"original_filename": "notes.txt", "file_size": len(b"Hello from upload")}
    assert src["file_mime"] == "text/plain"
    enqueue.assert_awaited_once_with("summarize_source_job", source_id=src["id"])


@pytest.mark.asyncio
async def test_upload_subtitles_become_meeting_transcript(client: AsyncClient):
    space_id = await _space(client)

    resp = await client.post(
        f"/v1/spaces/{space_id}/sources/upload",
        files={"file": ("standup.srt", SRT, "application/x-subrip")},
        data={"nom": "Standup"},
    )
    assert resp.status_code == 201
    src = resp.json()
    assert src["type"] == "meeting"
    assert src["nom"] == "Standup"
    assert src["content"] == "We approved the budget. Next item is hiring."


@pytest.mark.asyncio
async def test_upload_rejects_unsupported_extension(client: AsyncClient):
    space_id = await _space(client)
    resp = await client.post(
        f"/v1/spaces/{space_id}/sources/upload",
        files={"file": ("tool.exe", b"MZ", "application/octet-stream")},
    )
    assert resp.status_code == 422
    assert "Unsupported file type" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_upload_rejects_empty_and_undecodable(client: AsyncClient):
    space_id = await _space(client)

    resp = await client.post(
        f"/v1/spaces/{space_id}/sources/upload",
        files={"file": ("blank.txt", b"   \n", "text/plain")},
    )
    assert resp.status_code == 422
    assert resp.json()["detail"] == "No text could be extracted from the file"

    resp = await client.post(
        f"/v1/spaces/{space_id}/sources/upload",
        files={"file": ("latin.txt", "café".encode("latin-1"), "text/plain")},
    )
    assert resp.status_code == 422
    assert resp.json()["detail"].startswith("Could not read file")


@pytest.mark.asyncio
async def test_upload_to_unknown_space(client: AsyncClient):
    import uuid

    resp = await client.post(
        f"/v1/spaces/{uuid.uuid4()}/sources/upload",
        files={"file": ("notes.txt", b"Hello", "text/plain")},
    )
    assert resp.status_code == 404
