"""Space CRUD. Deleting a space removes its sources and conversations."""

import uuid

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import delete
from sqlmodel import select

from app.api.deps import Session
from app.models.conversation import Conversation
from app.models.message import Message
from app.models.source import Source
from app.models.space import Space, SpaceCreate, SpaceRead
from app.models.summary_model import SummaryModel
from app.services.search import invalidate_stats

router = APIRouter(prefix="/spaces", tags=["spaces"])


async def _get_or_404(space_id: uuid.UUID, session: Session) -> Space:
    space = await session.get(Space, space_id)
    if space is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Space not found")
    return space


@router.post("", response_model=SpaceRead, status_code=status.HTTP_201_CREATED)
async def create_space(body: SpaceCreate, session: Session) -> Space:
    if body.summary_model_id is not None:
        if await session.get(SummaryModel, body.summary_model_id) is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
                detail="Unknown summary model",
            )

    space = Space(**body.model_dump())
    session.add(space)
    await session.commit()
    await session.refresh(space)
    return space


@router.get("", response_model=list[SpaceRead])
async def list_spaces(session: Session) -> list[Space]:
    stmt = select(Space).order_by(Space.created_at.desc())  # type: ignore[attr-defined]
    result = await session.execute(stmt)
    return list(result.scalars().all())


@router.get("/{space_id}", response_model=SpaceRead)
async def get_space(space_id: uuid.UUID, session: Session) -> Space:
    return await _get_or_404(space_id, session)


@router.delete("/{space_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_space(space_id: uuid.UUID, session: Session) -> None:
    space = await _get_or_404(space_id, session)

    conversation_ids = select(Conversation.id).where(Conversation.space_id == space_id)
    await session.execute(delete(Message).where(Message.conversation_id.in_(conversation_ids)))  # type: ignore[attr-defined]
    await session.execute(delete(Conversation).where(Conversation.space_id == space_id))
    await session.execute(delete(Source).where(Source.space_id == space_id))
    await session.delete(space)
    await session.commit()
    invalidate_stats(space_id)
