"""Source endpoints — creation, upload, polling surface, on-demand summary."""

import uuid
from pathlib import Path

from fastapi import APIRouter, Form, HTTPException, UploadFile, status
from pydantic import BaseModel
from sqlmodel import select

from app.api.deps import Session, http_error
from app.core.errors import MemoraError
from app.models.source import (
    Source,
    SourceCreate,
    SourceRead,
    SourceStatusRead,
    SourceType,
)
from app.models.space import Space
from app.services import lifecycle
from app.services.extract import (
    ALLOWED_EXTENSIONS,
    MAX_FILE_SIZE,
    SUBTITLE_EXTENSIONS,
    extract_text,
)
from app.workers.queue import enqueue_job

router = APIRouter(tags=["sources"])


class SummarizeRequest(BaseModel):
    model_id: uuid.UUID | None = None


class SummarizeResponse(BaseModel):
    status: str
    message: str


async def _get_or_404(source_id: uuid.UUID, session: Session) -> Source:
    src = await session.get(Source, source_id)
    if src is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Source not found")
    return src


async def _create(space_id: uuid.UUID, body: SourceCreate, session: Session) -> SourceRead:
    try:
        src = await lifecycle.create_source(session, space_id, body)
    except MemoraError as exc:
        raise http_error(exc) from exc
    return SourceRead.from_source(src)


# ── Space-scoped ──────────────────────────────────────────────


@router.post(
    "/spaces/{space_id}/sources",
    response_model=SourceRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_source(space_id: uuid.UUID, body: SourceCreate, session: Session) -> SourceRead:
    """Create a source. Audio sources come back ``pending`` immediately."""
    return await _create(space_id, body, session)


@router.post(
    "/spaces/{space_id}/sources/upload",
    response_model=SourceRead,
    status_code=status.HTTP_201_CREATED,
)
async def upload_source(
    space_id: uuid.UUID,
    file: UploadFile,
    session: Session,
    nom: str | None = Form(None),
) -> SourceRead:
    """Upload a document or subtitle file and create a ready source from its text."""
    ext = Path(file.filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"Unsupported file type: {ext}. "
            f"Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
        )

    content = await file.read()

    if len(content) > MAX_FILE_SIZE:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"File too large. Maximum size is {MAX_FILE_SIZE // (1024 * 1024)} MB.",
        )

    try:
        extracted = extract_text(file.filename or "file.txt", content)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"Could not read file: {exc}",
        ) from exc

    if not extracted.strip():
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail="No text could be extracted from the file",
        )

    body = SourceCreate(
        type=SourceType.MEETING if ext in SUBTITLE_EXTENSIONS else SourceType.DOCUMENT,
        nom=nom or file.filename or "Uploaded file",
        content=extracted,
        meta={"original_filename": file.filename, "file_size": len(content)},
        file_size=len(content),
        file_mime=file.content_type,
    )
    return await _create(space_id, body, session)


@router.get("/spaces/{space_id}/sources", response_model=list[SourceRead])
async def list_sources(
    space_id: uuid.UUID,
    session: Session,
    type: SourceType | None = None,
    include_content: bool = False,
) -> list[SourceRead]:
    if await session.get(Space, space_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Space not found")

    stmt = select(Source).where(Source.space_id == space_id)
    if type is not None:
        stmt = stmt.where(Source.type == type)
    stmt = stmt.order_by(Source.updated_at.desc())  # type: ignore[attr-defined]
    result = await session.execute(stmt)
    return [SourceRead.from_source(s, include_content) for s in result.scalars().all()]


# ── Source-scoped ─────────────────────────────────────────────


@router.get("/sources/{source_id}", response_model=SourceRead)
async def get_source(source_id: uuid.UUID, session: Session) -> SourceRead:
    return SourceRead.from_source(await _get_or_404(source_id, session))


@router.delete("/sources/{source_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_source(source_id: uuid.UUID, session: Session) -> None:
    try:
        await lifecycle.delete_source(session, source_id)
    except MemoraError as exc:
        raise http_error(exc) from exc


@router.get("/sources/{source_id}/status", response_model=SourceStatusRead)
async def get_source_status(source_id: uuid.UUID, session: Session) -> SourceStatusRead:
    """Polling surface: never mutates the source."""
    try:
        return await lifecycle.get_source_status(session, source_id)
    except MemoraError as exc:
        raise http_error(exc) from exc


@router.post(
    "/sources/{source_id}/summarize",
    response_model=SummarizeResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def summarize_source(
    source_id: uuid.UUID,
    session: Session,
    body: SummarizeRequest | None = None,
) -> SummarizeResponse:
    """(Re)generate a source's summary in the background."""
    src = await _get_or_404(source_id, session)
    if not src.is_ready:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Source has no content yet",
        )

    kwargs = {"source_id": str(src.id)}
    if body is not None and body.model_id is not None:
        kwargs["model_id"] = str(body.model_id)

    try:
        await enqueue_job("summarize_source_job", **kwargs)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue unavailable, try again later",
        ) from exc

    return SummarizeResponse(status="accepted", message=f"Summarization queued for {src.nom}")
