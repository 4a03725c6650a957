"""Lexical relevance primitives shared by search and chat retrieval.

Matching is case-insensitive substring matching of each query term. The
same matcher drives scoring, excerpt selection and highlighting, so a
highlighted excerpt always corresponds to counted occurrences.
"""

from __future__ import annotations

import html
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from app.services.chunking import count_words

MIN_QUERY_LENGTH = 2
EXCERPT_RADIUS = 100
MAX_EXCERPTS = 2
# How far an excerpt edge may move to land on a sentence boundary
SNAP_DISTANCE = 40

_SENTENCE_START = re.compile(r"[.!?]\s+|\n+")
_SENTENCE_STOP = re.compile(r"[.!?](?=\s|$)|(?=\n)")


@dataclass(frozen=True)
class Excerpt:
    start: int
    end: int
    text: str
    hits: int


class Scorer(Protocol):
    """Relevance strategy behind search and retrieval."""

    def score(self, text: str, terms: Sequence[str]) -> float: ...


class LexicalScorer:
    """Term occurrences normalized by the text's word count."""

    def score(self, text: str, terms: Sequence[str]) -> float:
        return score_text(text, terms)


LEXICAL = LexicalScorer()


def normalize_query(query: str | None) -> str | None:
    """Trim a query; None when it is too short to search."""
    q = (query or "").strip()
    if len(q) < MIN_QUERY_LENGTH:
        return None
    return q


def parse_terms(query: str) -> list[str]:
    """Lower-cased, de-duplicated whitespace tokens, in query order."""
    seen: dict[str, None] = {}
    for token in query.lower().split():
        seen.setdefault(token, None)
    return list(seen)


def find_matches(text: str, terms: Sequence[str]) -> list[tuple[int, int]]:
    """All (start, end) occurrences of every term, sorted by position.

    Occurrences of one term never overlap each other; occurrences of
    different terms may (e.g. "budget" and "get").
    """
    if not text:
        return []
    spans: list[tuple[int, int]] = []
    for term in terms:
        spans.extend(
            (m.start(), m.end())
            for m in re.finditer(re.escape(term), text, re.IGNORECASE)
        )
    spans.sort()
    return spans


def score_text(text: str | None, terms: Sequence[str]) -> float:
    if not text or not terms:
        return 0.0
    hits = len(find_matches(text, terms))
    if not hits:
        return 0.0
    return hits / max(1, count_words(text))


def extract_excerpts(
    text: str,
    terms: Sequence[str],
    radius: int = EXCERPT_RADIUS,
    max_excerpts: int = MAX_EXCERPTS,
) -> list[Excerpt]:
    """Windows around the densest occurrences, best first, non-overlapping."""
    matches = find_matches(text, terms)
    if not matches:
        return []

    def density(span: tuple[int, int]) -> int:
        lo, hi = span[0] - radius, span[1] + radius
        return sum(1 for s, e in matches if s >= lo and e <= hi)

    ranked = sorted(matches, key=lambda s: (-density(s), s[0]))
    excerpts: list[Excerpt] = []
    taken: list[tuple[int, int]] = []

    for m_start, m_end in ranked:
        if len(excerpts) >= max_excerpts:
            break
        if any(m_start < e and m_end > s for s, e in taken):
            continue
        start = _snap_left(text, max(0, m_start - radius), m_start)
        end = _snap_right(text, min(len(text), m_end + radius), m_end)
        if any(start < e and end > s for s, e in taken):
            continue
        taken.append((start, end))
        hits = sum(1 for s, e in matches if s >= start and e <= end)
        excerpts.append(Excerpt(start=start, end=end, text=_decorate(text, start, end), hits=hits))

    return excerpts


def highlight(excerpt: str, terms: Sequence[str]) -> str:
    """HTML-escape an excerpt and wrap every match in ``<mark>``."""
    spans = _merge(find_matches(excerpt, terms))
    out: list[str] = []
    pos = 0
    for s, e in spans:
        out.append(html.escape(excerpt[pos:s]))
        out.append(f"<mark>{html.escape(excerpt[s:e])}</mark>")
        pos = e
    out.append(html.escape(excerpt[pos:]))
    return "".join(out)


def _merge(spans: list[tuple[int, int]]) -> list[tuple[int, int]]:
    merged: list[tuple[int, int]] = []
    for s, e in spans:
        if merged and s <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], e))
        else:
            merged.append((s, e))
    return merged


def _snap_left(text: str, pos: int, limit: int) -> int:
    """Move a left edge to a sentence start nearby, else to a word start."""
    if pos <= 0:
        return 0
    lo = max(0, pos - SNAP_DISTANCE)
    hi = min(limit, pos + SNAP_DISTANCE)
    candidates = [m.end() for m in _SENTENCE_START.finditer(text, lo, hi) if m.end() <= limit]
    if candidates:
        return min(candidates, key=lambda c: (abs(c - pos), c))
    space = text.find(" ", pos, limit)
    return space + 1 if space != -1 else pos


def _snap_right(text: str, pos: int, floor: int) -> int:
    """Move a right edge to a sentence end nearby, else to a word end."""
    if pos >= len(text):
        return len(text)
    lo = max(floor, pos - SNAP_DISTANCE)
    hi = min(len(text), pos + SNAP_DISTANCE)
    candidates = [m.end() for m in _SENTENCE_STOP.finditer(text, lo, hi) if m.end() >= floor]
    if candidates:
        return min(candidates, key=lambda c: (abs(c - pos), c))
    space = text.rfind(" ", floor, pos)
    return space if space != -1 else pos


def _decorate(text: str, start: int, end: int) -> str:
    body = text[start:end].strip()
    if start > 0:
        body = "..." + body
    if end < len(text):
        body = body + "..."
    return body
