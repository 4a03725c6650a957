"""Transcription gateway — audio in, transcript out, asynchronously.

Both delivery paths (provider webhook and polling) are turned into the same
``TranscriptionEvent``; the source lifecycle only reacts to events and never
cares how one arrived.

Deepgram is the shipped provider. With ``transcription_callback_url`` set,
jobs run in callback mode: ``submit`` returns Deepgram's ``request_id`` and
the transcript arrives on the webhook. Without a callback URL the request is
made inline and its result is held until the next ``poll_status`` call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol
from urllib.parse import urlencode

import httpx

from app.core.config import Settings

logger = logging.getLogger(__name__)


class TranscriptionError(Exception):
    """The provider rejected the job or could not be reached."""


@dataclass(frozen=True)
class TranscriptSegment:
    speaker: str | None
    start: float
    end: float
    text: str


@dataclass(frozen=True)
class TranscriptPayload:
    text: str
    segments: list[TranscriptSegment] = field(default_factory=list)
    speakers: list[str] = field(default_factory=list)
    duration_seconds: int = 0
    confidence: float | None = None


class JobState(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class TranscriptionPoll:
    state: JobState
    payload: TranscriptPayload | None = None
    error: str | None = None


class EventKind(StrEnum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class TranscriptionEvent:
    job_id: str
    kind: EventKind
    payload: TranscriptPayload | None = None
    error: str | None = None

    @classmethod
    def started(cls, job_id: str) -> TranscriptionEvent:
        return cls(job_id=job_id, kind=EventKind.STARTED)

    @classmethod
    def completed(cls, job_id: str, payload: TranscriptPayload) -> TranscriptionEvent:
        return cls(job_id=job_id, kind=EventKind.COMPLETED, payload=payload)

    @classmethod
    def failed(cls, job_id: str, error: str) -> TranscriptionEvent:
        return cls(job_id=job_id, kind=EventKind.FAILED, error=error)

    @classmethod
    def from_poll(cls, job_id: str, poll: TranscriptionPoll) -> TranscriptionEvent | None:
        """Translate a poll observation; None while the job is still idle."""
        if poll.state is JobState.RUNNING:
            return cls.started(job_id)
        if poll.state is JobState.COMPLETED and poll.payload is not None:
            return cls.completed(job_id, poll.payload)
        if poll.state is JobState.FAILED:
            return cls.failed(job_id, poll.error or "transcription failed")
        return None


class TranscriptionGateway(Protocol):
    provider: str

    async def submit(self, audio_url: str) -> str: ...

    async def poll_status(self, job_id: str) -> TranscriptionPoll: ...

    def parse_callback(self, body: dict[str, Any]) -> TranscriptionEvent: ...


# ── Deepgram ─────────────────────────────────────────────────

class DeepgramGateway:
    """TranscriptionGateway for Deepgram's pre-recorded API."""

    provider = "deepgram"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.deepgram.com/v1",
        model: str = "nova-2",
        language: str = "fr",
        callback_url: str = "",
        callback_secret: str = "",
        project_id: str = "",
        timeout: float = 30.0,
        inline_timeout: float = 3600.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.language = language
        self.callback_url = callback_url
        self.callback_secret = callback_secret
        self.project_id = project_id
        self.timeout = timeout
        self.inline_timeout = inline_timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)
        # Results of inline (no-callback) requests, handed out by poll_status
        self._inline_results: dict[str, TranscriptionPoll] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> DeepgramGateway:
        return cls(
            api_key=settings.deepgram_api_key,
            base_url=settings.deepgram_api_url,
            model=settings.deepgram_model,
            language=settings.deepgram_language,
            callback_url=settings.transcription_callback_url,
            callback_secret=settings.transcription_webhook_secret,
            project_id=settings.deepgram_project_id,
            timeout=settings.transcription_timeout_seconds,
            inline_timeout=float(settings.transcription_max_age_seconds),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": "application/json",
        }

    def _listen_params(self) -> dict[str, str]:
        params = {
            "model": self.model,
            "language": self.language,
            "punctuate": "true",
            "diarize": "true",
            "utterances": "true",
            "smart_format": "true",
        }
        if self.callback_url:
            callback = self.callback_url
            if self.callback_secret:
                sep = "&" if "?" in callback else "?"
                callback = f"{callback}{sep}{urlencode({'token': self.callback_secret})}"
            params["callback"] = callback
        return params

    async def submit(self, audio_url: str) -> str:
        if not self.api_key:
            raise TranscriptionError("DEEPGRAM_API_KEY is not configured")

        inline = not self.callback_url
        try:
            resp = await self._client.post(
                f"{self.base_url}/listen",
                params=self._listen_params(),
                headers=self._headers,
                json={"url": audio_url},
                timeout=self.inline_timeout if inline else self.timeout,
            )
        except httpx.HTTPError as exc:
            raise TranscriptionError(f"Deepgram request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise TranscriptionError(f"Deepgram error ({resp.status_code}): {resp.text[:500]}")

        try:
            body = resp.json()
            job_id = _request_id(body)
            payload = parse_deepgram_result(body) if inline else None
        except _MALFORMED as exc:
            raise TranscriptionError(f"Unreadable Deepgram response: {exc!r}") from exc
        if not job_id:
            raise TranscriptionError("Deepgram response carried no request_id")

        if payload is not None:
            self._inline_results[job_id] = (
                TranscriptionPoll(state=JobState.COMPLETED, payload=payload)
                if payload.text
                else TranscriptionPoll(state=JobState.FAILED, error="empty transcript")
            )

        logger.info("Deepgram job %s submitted (%s mode)", job_id, "inline" if inline else "callback")
        return job_id

    async def poll_status(self, job_id: str) -> TranscriptionPoll:
        inline = self._inline_results.pop(job_id, None)
        if inline is not None:
            return inline

        if not self.project_id:
            # Request introspection needs a project; rely on the callback
            return TranscriptionPoll(state=JobState.RUNNING)

        try:
            resp = await self._client.get(
                f"{self.base_url}/projects/{self.project_id}/requests/{job_id}",
                headers=self._headers,
            )
        except httpx.HTTPError as exc:
            raise TranscriptionError(f"Deepgram poll failed: {exc}") from exc

        if resp.status_code == 404:
            return TranscriptionPoll(state=JobState.QUEUED)
        if resp.status_code >= 400:
            raise TranscriptionError(f"Deepgram poll error ({resp.status_code})")

        try:
            return _poll_from_request(resp.json())
        except _MALFORMED as exc:
            raise TranscriptionError(f"Unreadable Deepgram request log: {exc!r}") from exc

    def parse_callback(self, body: dict[str, Any]) -> TranscriptionEvent:
        try:
            job_id = _request_id(body)
            err = body.get("err_msg") or body.get("error")
            payload = None if err else parse_deepgram_result(body)
        except _MALFORMED as exc:
            raise TranscriptionError(f"Unreadable callback body: {exc!r}") from exc
        if not job_id:
            raise TranscriptionError("callback body carried no request_id")

        if err:
            return TranscriptionEvent.failed(job_id, str(err)[:500])
        if not payload.text:
            return TranscriptionEvent.failed(job_id, "empty transcript")
        return TranscriptionEvent.completed(job_id, payload)


# Shapes a provider body can fail in once decoded (JSONDecodeError is a ValueError)
_MALFORMED = (ValueError, TypeError, KeyError, IndexError, AttributeError)


def _request_id(body: dict[str, Any]) -> str | None:
    return body.get("request_id") or (body.get("metadata") or {}).get("request_id")


def _poll_from_request(body: dict[str, Any]) -> TranscriptionPoll:
    response = body.get("response") or {}
    code = response.get("code")
    if code is None:
        return TranscriptionPoll(state=JobState.RUNNING)
    if int(code) >= 400:
        return TranscriptionPoll(
            state=JobState.FAILED,
            error=str(response.get("message") or f"provider returned HTTP {code}"),
        )
    if "results" in response:
        payload = parse_deepgram_result(response)
        if payload.text:
            return TranscriptionPoll(state=JobState.COMPLETED, payload=payload)
        return TranscriptionPoll(state=JobState.FAILED, error="empty transcript")
    # Finished on the provider side; the transcript travels through the callback
    return TranscriptionPoll(state=JobState.RUNNING)


# ── Deepgram result parsing ──────────────────────────────────

def _speaker_label(speaker: Any) -> str | None:
    if speaker is None:
        return None
    return f"Speaker {speaker}"


def _timestamp(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


def parse_deepgram_result(result: dict[str, Any]) -> TranscriptPayload:
    """Build a TranscriptPayload from a Deepgram ``/listen`` result body."""
    results = result.get("results") or {}
    utterances = results.get("utterances") or []
    channels = results.get("channels") or [{}]
    alternative = ((channels[0] or {}).get("alternatives") or [{}])[0] or {}

    segments = [
        TranscriptSegment(
            speaker=_speaker_label(u.get("speaker")),
            start=float(u.get("start") or 0),
            end=float(u.get("end") or 0),
            text=(u.get("transcript") or "").strip(),
        )
        for u in utterances
    ]

    if segments:
        text = "\n\n".join(
            f"[{_timestamp(s.start)}] {s.speaker or 'Speaker'}: {s.text}" for s in segments
        )
    else:
        text = (alternative.get("transcript") or "").strip()

    speaker_ids = sorted({u.get("speaker") for u in utterances if u.get("speaker") is not None})
    speakers = [f"Speaker {s}" for s in speaker_ids]

    words = alternative.get("words") or []
    if words:
        duration = round(float(words[-1].get("end") or 0))
    else:
        duration = round(float((result.get("metadata") or {}).get("duration") or 0))

    confidence = alternative.get("confidence")
    return TranscriptPayload(
        text=text,
        segments=segments,
        speakers=speakers,
        duration_seconds=duration,
        confidence=float(confidence) if confidence is not None else None,
    )


def resolve_audio_url(file_key: str, file_base_url: str = "") -> str:
    """Turn a storage key into a URL the provider can fetch."""
    if file_key.startswith(("http://", "https://")):
        return file_key
    if not file_base_url:
        raise TranscriptionError("file_base_url is not configured; cannot locate audio")
    return f"{file_base_url.rstrip('/')}/{file_key.lstrip('/')}"
