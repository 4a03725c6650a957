"""Transcription provider callback."""

import hmac
import logging

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel

from app.api.deps import AppSettings, Session, Transcription
from app.services import lifecycle
from app.services.transcription import TranscriptionError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transcriptions", tags=["transcriptions"])


class WebhookAck(BaseModel):
    applied: bool
    status: str | None = None


@router.post("/webhook", response_model=WebhookAck)
async def transcription_webhook(
    request: Request,
    session: Session,
    gateway: Transcription,
    settings: AppSettings,
    token: str = "",
) -> WebhookAck:
    """Receive a provider callback and feed it to the source state machine.

    Unknown jobs and duplicate deliveries are acknowledged with
    ``applied=false`` so the provider stops retrying.
    """
    secret = settings.transcription_webhook_secret
    if secret and not hmac.compare_digest(token, secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook token")

    try:
        body = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body is not JSON") from exc
    if not isinstance(body, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body is not a JSON object")

    try:
        event = gateway.parse_callback(body)
    except TranscriptionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    result = await lifecycle.apply_transcription_event(session, event)
    logger.info("Webhook %s for job %s: applied=%s", event.kind, event.job_id, result.applied)
    return WebhookAck(
        applied=result.applied,
        status=str(result.status) if result.status is not None else None,
    )
