"""Search endpoints — ranked excerpts and dashboard stats for a space."""

import uuid
from datetime import datetime

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel

from app.api.deps import Session
from app.models.space import Space
from app.services import search as search_service
from app.services.search import MAX_LIMIT, SearchType

router = APIRouter(prefix="/spaces/{space_id}/search", tags=["search"])


class SearchResultRead(BaseModel):
    source_id: uuid.UUID
    nom: str
    type: str
    surface: str
    texte: str
    highlighted: str
    excerpts: list[str]
    score: float
    created_at: datetime
    updated_at: datetime


class SearchStatsRead(BaseModel):
    total_sources: int
    total_transcripts: int
    total_summaries: int
    total_words: int


async def _require_space(space_id: uuid.UUID, session: Session) -> None:
    if await session.get(Space, space_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Space not found")


@router.get("", response_model=list[SearchResultRead])
async def search_space(
    space_id: uuid.UUID,
    session: Session,
    q: str = "",
    type: SearchType = SearchType.ALL,
    limit: int = Query(default=search_service.DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
) -> list[SearchResultRead]:
    """Queries shorter than two characters return an empty list."""
    await _require_space(space_id, session)
    results = await search_service.search(session, space_id, q, type, limit)
    return [
        SearchResultRead(
            source_id=r.source_id,
            nom=r.nom,
            type=r.type,
            surface=str(r.surface),
            texte=r.texte,
            highlighted=r.highlighted,
            excerpts=r.excerpts,
            score=r.score,
            created_at=r.created_at,
            updated_at=r.updated_at,
        )
        for r in results
    ]


@router.get("/stats", response_model=SearchStatsRead)
async def search_stats(space_id: uuid.UUID, session: Session) -> SearchStatsRead:
    await _require_space(space_id, session)
    stats = await search_service.search_stats(session, space_id)
    return SearchStatsRead(
        total_sources=stats.total_sources,
        total_transcripts=stats.total_transcripts,
        total_summaries=stats.total_summaries,
        total_words=stats.total_words,
    )
