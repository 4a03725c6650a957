"""FastAPI dependencies: DB session, settings and the process-wide gateways."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.database import get_session
from app.core.errors import InvalidRequestError, MemoraError, NotFoundError, ReplyGenerationError
from app.services.completion import CompletionGateway
from app.services.transcription import TranscriptionGateway

# Seconds a client should wait before retrying a failed reply
RETRY_AFTER_SECONDS = 5


def get_completion_gateway(request: Request) -> CompletionGateway:
    """The gateway built in the app lifespan (``app.state.completion``)."""
    return request.app.state.completion


def get_transcription_gateway(request: Request) -> TranscriptionGateway:
    return request.app.state.transcription


def http_error(exc: MemoraError) -> HTTPException:
    """Translate a domain error raised by a service into an HTTP error."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidRequestError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc))
    if isinstance(exc, ReplyGenerationError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# Typed shorthand for use in route signatures
Session = Annotated[AsyncSession, Depends(get_session)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Completion = Annotated[CompletionGateway, Depends(get_completion_gateway)]
Transcription = Annotated[TranscriptionGateway, Depends(get_transcription_gateway)]
