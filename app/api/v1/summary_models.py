"""Summary model catalogue — per-space models plus shared entries."""

import uuid

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import or_
from sqlmodel import select

from app.api.deps import Session
from app.models.base import dump_json
from app.models.space import Space
from app.models.summary_model import SummaryModel, SummaryModelCreate, SummaryModelRead

router = APIRouter(prefix="/summary-models", tags=["summary-models"])


@router.get("", response_model=list[SummaryModelRead])
async def list_summary_models(
    session: Session,
    space_id: uuid.UUID | None = None,
) -> list[SummaryModelRead]:
    """Models owned by ``space_id`` plus the shared catalogue."""
    shared = SummaryModel.space_id.is_(None)  # type: ignore[union-attr]
    stmt = select(SummaryModel).where(
        or_(shared, SummaryModel.space_id == space_id) if space_id else shared
    ).order_by(SummaryModel.created_at)
    result = await session.execute(stmt)
    return [SummaryModelRead.from_model(m) for m in result.scalars().all()]


@router.post("", response_model=SummaryModelRead, status_code=status.HTTP_201_CREATED)
async def create_summary_model(body: SummaryModelCreate, session: Session) -> SummaryModelRead:
    if body.space_id is not None and await session.get(Space, body.space_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Space not found")
    if not body.sections:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail="At least one section is required",
        )

    m = SummaryModel(
        space_id=body.space_id,
        name=body.name,
        description=body.description,
        sections=dump_json([s.value for s in body.sections]),
        tone=body.tone,
        detail_level=body.detail_level,
        custom_instructions=body.custom_instructions,
        is_default=body.is_default,
        # Entries without a space are the shared catalogue
        is_shared=body.is_shared or body.space_id is None,
    )
    session.add(m)
    await session.commit()
    await session.refresh(m)
    return SummaryModelRead.from_model(m)
