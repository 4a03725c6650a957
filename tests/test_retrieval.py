"""Tests for the retrieval context builder."""

import itertools
import uuid
from datetime import datetime

import pytest

from app.models.source import Source, SourceType, TranscriptionStatus
from app.services.retrieval import (
    NO_RELEVANT_SOURCE_MARKER,
    best_excerpt,
    build_context,
    estimate_tokens,
    render_prompt_block,
    select_excerpts,
)

LONG_TEXT = (
    "Lorem ipsum dolor sit amet. " * 40
    + "The budget was approved. "
    + "Consectetur adipiscing elit. " * 40
)


def _source(nom: str, content: str | None, summary: str | None = None, **fields) -> Source:
    return Source(
        id=fields.pop("id", uuid.uuid4()),
        space_id=uuid.uuid4(),
        type=fields.pop("type", SourceType.TEXT),
        nom=nom,
        content=content,
        summary=summary,
        updated_at=fields.pop("updated_at", datetime(2024, 1, 1)),
        **fields,
    )


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("", 4) == 0
    assert estimate_tokens("abcd", 4) == 1
    assert estimate_tokens("abcde", 4) == 2


def test_best_excerpt_picks_matching_chunk():
    excerpt = best_excerpt(LONG_TEXT, ["budget"], 200)
    assert len(excerpt) <= 200
    assert "budget" in excerpt
    assert best_excerpt("short", ["budget"], 200) == "short"


def test_only_relevant_ready_sources_are_selected():
    sources = [
        _source("Budget Q1", "we approved the budget increase"),
        _source("Party", "holiday party at noon"),
        _source(
            "Pending call", None,
            type=SourceType.MEETING, transcription_status=TranscriptionStatus.PENDING,
        ),
    ]
    refs = select_excerpts(sources, "budget")
    assert [r.nom for r in refs] == ["Budget Q1"]
    assert refs[0].extrait == "we approved the budget increase"


def test_summary_used_when_only_it_matches():
    src = _source("Weekly", "nothing relevant here", summary="## Key points\n- budget approved")
    refs = select_excerpts([src], "budget")
    assert refs[0].extrait == "## Key points\n- budget approved"


def test_long_source_is_cut_to_budget():
    refs = select_excerpts([_source("Minutes", LONG_TEXT)], "budget", token_budget=50)
    assert len(refs) == 1
    assert estimate_tokens(refs[0].extrait) <= 50
    assert "budget" in refs[0].extrait


def test_total_never_exceeds_budget():
    sources = [_source(f"S{i}", LONG_TEXT) for i in range(10)]
    for budget in (1, 40, 100, 333, 1000):
        refs = select_excerpts(sources, "budget", token_budget=budget, max_sources=10)
        assert sum(estimate_tokens(r.extrait) for r in refs) <= budget


def test_max_sources_caps_selection():
    sources = [_source(f"S{i}", f"budget line {i}") for i in range(5)]
    assert len(select_excerpts(sources, "budget", max_sources=2)) == 2


def test_selection_is_deterministic():
    sources = [_source(f"S{i}", "budget plan") for i in range(3)]
    sources.append(_source("Dense", "budget budget"))
    expected = [r.source_id for r in select_excerpts(sources, "budget")]

    assert expected[0] == sources[-1].id
    for perm in itertools.permutations(sources):
        assert [r.source_id for r in select_excerpts(list(perm), "budget")] == expected


def test_short_query_or_zero_budget_selects_nothing():
    sources = [_source("Budget", "budget")]
    assert select_excerpts(sources, "b") == []
    assert select_excerpts(sources, "budget", token_budget=0) == []


def test_prompt_block_numbers_sources():
    refs = select_excerpts([_source("Budget Q1", "we approved the budget increase")], "budget")
    block = render_prompt_block(refs)
    assert block == "Sources:\n\n[1] Budget Q1 (text)\nwe approved the budget increase"


def test_prompt_block_marks_absence():
    block = render_prompt_block([])
    assert block.startswith(NO_RELEVANT_SOURCE_MARKER)
    assert "Do not cite" in block


@pytest.mark.asyncio
async def test_build_context_for_empty_space(session, space):
    context = await build_context(session, space.id, "budget")
    assert context.is_empty
    assert context.tokens_used == 0
    assert NO_RELEVANT_SOURCE_MARKER in context.prompt_block


@pytest.mark.asyncio
async def test_build_context_reads_space_sources(session, space, add_source):
    await add_source(nom="Budget Q1", content="we approved the budget increase")
    context = await build_context(session, space.id, "budget", token_budget=100)

    assert [e.nom for e in context.excerpts] == ["Budget Q1"]
    assert context.tokens_used == estimate_tokens("we approved the budget increase")
    assert "[1] Budget Q1" in context.prompt_block
