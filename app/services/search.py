"""Content index — ranked, excerpted search over a space's ready sources.

Only sources whose ``content`` is set take part. Each source is matched on
two surfaces, its content ("transcript") and its summary ("summary"), and
yields at most one result per surface.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core import cache
from app.models.source import Source, TranscriptionStatus
from app.services.scoring import (
    LEXICAL,
    Scorer,
    extract_excerpts,
    highlight,
    normalize_query,
    parse_terms,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
STATS_TTL = 30


class SearchType(StrEnum):
    ALL = "all"
    TRANSCRIPTS = "transcripts"
    SUMMARIES = "summaries"


class Surface(StrEnum):
    TRANSCRIPT = "transcript"
    SUMMARY = "summary"


@dataclass
class SearchResult:
    source_id: uuid.UUID
    nom: str
    type: str
    surface: Surface
    texte: str
    highlighted: str
    score: float
    created_at: datetime
    updated_at: datetime
    excerpts: list[str] = field(default_factory=list)


@dataclass
class SearchStats:
    total_sources: int
    total_transcripts: int
    total_summaries: int
    total_words: int


def stats_cache_key(space_id: uuid.UUID) -> tuple:
    return ("search", "stats", space_id)


def sort_key(score: float, updated_at: datetime, source_id: uuid.UUID) -> tuple:
    """(score desc, updated_at desc, source_id asc) as an ascending key."""
    return (-score, -updated_at.timestamp(), str(source_id))


def rank_sources(
    sources: list[Source],
    query: str | None,
    search_type: SearchType = SearchType.ALL,
    limit: int = DEFAULT_LIMIT,
    scorer: Scorer = LEXICAL,
) -> list[SearchResult]:
    """Pure ranking over already-loaded sources."""
    q = normalize_query(query)
    if q is None:
        return []
    terms = parse_terms(q)
    limit = max(1, min(limit, MAX_LIMIT))

    surfaces: list[Surface] = []
    if search_type in (SearchType.ALL, SearchType.TRANSCRIPTS):
        surfaces.append(Surface.TRANSCRIPT)
    if search_type in (SearchType.ALL, SearchType.SUMMARIES):
        surfaces.append(Surface.SUMMARY)

    results: list[SearchResult] = []
    for src in sources:
        if not src.is_ready:
            continue
        for surface in surfaces:
            text = src.content if surface is Surface.TRANSCRIPT else src.summary
            if not text:
                continue
            score = scorer.score(text, terms)
            if score <= 0:
                continue
            excerpts = extract_excerpts(text, terms)
            if not excerpts:
                continue
            best = excerpts[0].text
            results.append(SearchResult(
                source_id=src.id,
                nom=src.nom,
                type=str(src.type),
                surface=surface,
                texte=best,
                highlighted=highlight(best, terms),
                score=score,
                created_at=src.created_at,
                updated_at=src.updated_at,
                excerpts=[e.text for e in excerpts],
            ))

    results.sort(key=lambda r: (*sort_key(r.score, r.updated_at, r.source_id), r.surface))
    return results[:limit]


async def load_ready_sources(session: AsyncSession, space_id: uuid.UUID) -> list[Source]:
    stmt = select(Source).where(
        Source.space_id == space_id,
        Source.content.is_not(None),  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def search(
    session: AsyncSession,
    space_id: uuid.UUID,
    query: str | None,
    search_type: SearchType = SearchType.ALL,
    limit: int = DEFAULT_LIMIT,
    scorer: Scorer = LEXICAL,
) -> list[SearchResult]:
    """Search a space. Queries under two characters return no results."""
    if normalize_query(query) is None:
        return []
    sources = await load_ready_sources(session, space_id)
    results = rank_sources(sources, query, search_type, limit, scorer)
    logger.debug(
        "Search space=%s type=%s: %d results over %d ready sources",
        space_id, search_type, len(results), len(sources),
    )
    return results


async def _stats_fingerprint(session: AsyncSession, space_id: uuid.UUID) -> tuple:
    """Source count and latest write of a space; changes on any source write."""
    row = (await session.execute(
        select(func.count(Source.id), func.max(Source.updated_at)).where(Source.space_id == space_id)
    )).one()
    return (row[0], row[1])


async def search_stats(session: AsyncSession, space_id: uuid.UUID) -> SearchStats:
    """Dashboard aggregates for a space (cached briefly).

    A cached entry is reused only while the space's source fingerprint is
    unchanged, so writes made by other processes (the ARQ worker finishing a
    transcription or a summary) show up on the next read.
    """
    key = stats_cache_key(space_id)
    fingerprint = await _stats_fingerprint(session, space_id)
    cached = cache.get(key, ttl=STATS_TTL)
    if cached is not None and cached[0] == fingerprint:
        return cached[1]

    ready = Source.content.is_not(None)  # type: ignore[union-attr]
    row = (await session.execute(
        select(
            func.count(Source.id),
            func.coalesce(func.sum(Source.word_count), 0),
        ).where(Source.space_id == space_id, ready)
    )).one()
    transcripts = (await session.execute(
        select(func.count(Source.id)).where(
            Source.space_id == space_id,
            Source.transcription_status == TranscriptionStatus.DONE,
            ready,
        )
    )).scalar_one()
    summaries = (await session.execute(
        select(func.count(Source.id)).where(
            Source.space_id == space_id,
            Source.summary.is_not(None),  # type: ignore[union-attr]
            ready,
        )
    )).scalar_one()

    stats = SearchStats(
        total_sources=row[0],
        total_transcripts=transcripts,
        total_summaries=summaries,
        total_words=int(row[1]),
    )
    cache.put(key, (fingerprint, stats))
    return stats


def invalidate_stats(space_id: uuid.UUID) -> None:
    cache.invalidate(stats_cache_key(space_id))
