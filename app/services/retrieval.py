"""Retrieval context builder — selects and budgets source excerpts for chat.

Sources are ranked with the same scorer as search, over content and summary
together. The walk takes each source whole when it fits the remaining
budget, otherwise its best contiguous chunk cut to what is left. What is
returned here is exactly what an answer may cite.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.message import SourceReference
from app.models.source import Source
from app.services.chunking import chunk_text
from app.services.scoring import LEXICAL, Scorer, find_matches, normalize_query, parse_terms
from app.services.search import load_ready_sources, sort_key

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_BUDGET = 3000
DEFAULT_MAX_SOURCES = 8
DEFAULT_CHARS_PER_TOKEN = 4
# Below this many tokens left, no further excerpt is worth adding
MIN_EXCERPT_TOKENS = 32

NO_RELEVANT_SOURCE_MARKER = "[NO_RELEVANT_SOURCE]"


@dataclass
class RetrievalContext:
    excerpts: list[SourceReference] = field(default_factory=list)
    prompt_block: str = ""
    tokens_used: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.excerpts


def estimate_tokens(text: str, chars_per_token: int = DEFAULT_CHARS_PER_TOKEN) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / max(1, chars_per_token))


def best_excerpt(text: str, terms: Sequence[str], max_chars: int) -> str:
    """The chunk of ``text`` (at most ``max_chars`` long) holding the most matches."""
    if len(text) <= max_chars:
        return text
    chunks = chunk_text(text, chunk_size=max_chars, chunk_overlap=max_chars // 4)
    if not chunks:
        return ""
    best = max(chunks, key=lambda c: (len(find_matches(c.content, terms)), -c.index))
    return best.content[:max_chars]


def select_excerpts(
    sources: Sequence[Source],
    query: str | None,
    token_budget: int = DEFAULT_TOKEN_BUDGET,
    max_sources: int = DEFAULT_MAX_SOURCES,
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
    min_relevance: float = 0.0,
    scorer: Scorer = LEXICAL,
) -> list[SourceReference]:
    """Pure selection over already-loaded sources."""
    q = normalize_query(query)
    if q is None or token_budget <= 0:
        return []
    terms = parse_terms(q)

    scored: list[tuple[float, Source]] = []
    for src in sources:
        if not src.is_ready:
            continue
        surface = src.content if not src.summary else f"{src.content}\n\n{src.summary}"
        score = scorer.score(surface, terms)
        if score > min_relevance:
            scored.append((score, src))
    scored.sort(key=lambda pair: sort_key(pair[0], pair[1].updated_at, pair[1].id))

    remaining = token_budget
    selected: list[SourceReference] = []
    for _, src in scored:
        if len(selected) >= max_sources or remaining < min(MIN_EXCERPT_TOKENS, token_budget):
            break

        # Prefer the content; fall back to the summary when only it matched
        text = src.content
        if not find_matches(text, terms) and src.summary:
            text = src.summary

        if estimate_tokens(text, chars_per_token) <= remaining:
            extrait = text
        else:
            extrait = best_excerpt(text, terms, remaining * chars_per_token).strip()
        if not extrait:
            continue

        remaining -= estimate_tokens(extrait, chars_per_token)
        selected.append(SourceReference(
            source_id=src.id,
            nom=src.nom,
            type=str(src.type),
            extrait=extrait,
        ))

    return selected


def render_prompt_block(excerpts: Sequence[SourceReference]) -> str:
    if not excerpts:
        return (
            f"{NO_RELEVANT_SOURCE_MARKER}\n"
            "No source in this space is relevant to the question. "
            "Do not cite or invent sources."
        )
    parts = [
        f"[{i}] {ref.nom} ({ref.type})\n{ref.extrait}"
        for i, ref in enumerate(excerpts, 1)
    ]
    return "Sources:\n\n" + "\n\n".join(parts)


async def build_context(
    session: AsyncSession,
    space_id: uuid.UUID,
    query: str | None,
    token_budget: int = DEFAULT_TOKEN_BUDGET,
    max_sources: int = DEFAULT_MAX_SOURCES,
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
    min_relevance: float = 0.0,
    scorer: Scorer = LEXICAL,
) -> RetrievalContext:
    sources = await load_ready_sources(session, space_id)
    excerpts = select_excerpts(
        sources, query, token_budget, max_sources, chars_per_token, min_relevance, scorer,
    )
    tokens = sum(estimate_tokens(e.extrait, chars_per_token) for e in excerpts)
    logger.debug(
        "Context for space %s: %d excerpts, %d/%d tokens",
        space_id, len(excerpts), tokens, token_budget,
    )
    return RetrievalContext(
        excerpts=excerpts,
        prompt_block=render_prompt_block(excerpts),
        tokens_used=tokens,
    )
