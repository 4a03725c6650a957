"""Unit tests for the lexical scoring primitives."""

from app.services.scoring import (
    MAX_EXCERPTS,
    extract_excerpts,
    find_matches,
    highlight,
    normalize_query,
    parse_terms,
    score_text,
)

FILLER = "lorem ipsum dolor sit amet " * 20


def test_normalize_query_rejects_short_queries():
    assert normalize_query(None) is None
    assert normalize_query("") is None
    assert normalize_query("  a  ") is None
    assert normalize_query(" ab ") == "ab"


def test_parse_terms_lowercases_and_dedupes():
    assert parse_terms("Budget budget  Q1") == ["budget", "q1"]


def test_find_matches_is_case_insensitive_substring():
    assert find_matches("Budget budgets", ["budget"]) == [(0, 6), (7, 13)]
    assert find_matches("", ["budget"]) == []


def test_score_counts_all_occurrences_over_word_count():
    assert score_text("budget budget plan", ["budget"]) == 2 / 3
    assert score_text("nothing here", ["budget"]) == 0.0
    assert score_text(None, ["budget"]) == 0.0


def test_single_match_excerpt_is_whole_short_text():
    text = "we approved the budget increase"
    excerpts = extract_excerpts(text, ["budget"])
    assert len(excerpts) == 1
    assert excerpts[0].text == text
    assert excerpts[0].hits == 1


def test_excerpts_capped_and_non_overlapping():
    text = f"budget {FILLER}budget {FILLER}budget"
    excerpts = extract_excerpts(text, ["budget"])

    assert len(excerpts) == MAX_EXCERPTS
    first, second = excerpts
    assert first.end <= second.start or second.end <= first.start
    assert first.text.startswith("budget")
    assert first.text.endswith("...")
    assert second.text.startswith("...")
    # Scoring still sees the third occurrence
    assert len(find_matches(text, ["budget"])) == 3


def test_excerpt_edges_land_on_word_boundaries():
    text = f"{FILLER}the budget was approved. {FILLER}"
    for e in extract_excerpts(text, ["budget"]):
        assert e.start == 0 or text[e.start - 1].isspace()
        assert e.end == len(text) or text[e.end].isspace() or text[e.end - 1] in ".!?"


def test_excerpt_prefers_densest_region():
    text = f"budget {FILLER}budget and budget again {FILLER}"
    best = extract_excerpts(text, ["budget"])[0]
    assert best.hits == 2
    assert "budget and budget" in best.text


def test_highlight_escapes_html_and_marks_matches():
    out = highlight("<b>budget</b> & Budget", ["budget"])
    assert out == "&lt;b&gt;<mark>budget</mark>&lt;/b&gt; &amp; <mark>Budget</mark>"


def test_highlight_merges_overlapping_terms():
    assert highlight("budget", ["budget", "get"]) == "<mark>budget</mark>"
