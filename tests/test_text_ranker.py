from __future__ import annotations

import pytest

from fee_catalog.search import TextRanker, render_highlight, text_relevance
from fee_catalog.search.text import highlight_spans, tokenize

from conftest import make_item, sample_items


@pytest.fixture()
def ranker() -> TextRanker:
    return TextRanker()


def _by_number(number: int):
    return next(item for item in sample_items() if item.item_number == number)


def test_tokenize_normalizes_case_punctuation_and_zeros() -> None:
    assert tokenize("ATTENDANCE, by a G.P.!") == ["attendance", "by", "a", "g", "p"]
    assert tokenize("0023") == ["23"]
    assert tokenize("000") == ["0"]
    assert tokenize(None) == []


# ---------------------------------------------------------------------------
# Item number scoring
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("query", ["23", "0023", "item 23", "MBS 23"])
def test_whole_query_equal_to_item_number_scores_one(ranker: TextRanker, query: str) -> None:
    assert ranker.score(_by_number(23), query) == 1.0


def test_number_plus_text_outranks_text_only(ranker: TextRanker) -> None:
    matches = ranker.rank(sample_items(), "item 23 attendance")

    assert matches[0].item.item_number == 23
    assert matches[0].score == pytest.approx(0.95)
    assert all(match.score < 0.95 for match in matches[1:])


def test_number_prefix_scores_partial(ranker: TextRanker) -> None:
    assert ranker.score(_by_number(10990), "109") == pytest.approx(0.4)
    assert ranker.score(_by_number(104), "109") == 0.0


# ---------------------------------------------------------------------------
# Field weighting
# ---------------------------------------------------------------------------


def test_short_description_outweighs_description_and_category(ranker: TextRanker) -> None:
    items = [
        make_item(10, "Procedure", short_description="Procedure", category="biopsy"),
        make_item(20, "Procedure including biopsy", short_description="Procedure"),
        make_item(30, "Procedure", short_description="Skin biopsy"),
    ]

    matches = ranker.rank(items, "biopsy")

    assert [match.item.item_number for match in matches] == [30, 20, 10]
    assert [match.score for match in matches] == pytest.approx([0.55, 0.45, 0.1])


def test_partial_word_gets_half_credit(ranker: TextRanker) -> None:
    assert ranker.score(_by_number(104), "consult") == pytest.approx(0.4)


def test_case_and_punctuation_do_not_change_scores(ranker: TextRanker) -> None:
    plain = ranker.rank(sample_items(), "attendance")
    shouted = ranker.rank(sample_items(), "ATTENDANCE!!!")

    assert [(m.item.item_number, m.score) for m in plain] == [
        (m.item.item_number, m.score) for m in shouted
    ]


def test_rank_drops_non_matches_and_breaks_ties_by_number(ranker: TextRanker) -> None:
    matches = ranker.rank(sample_items(), "general practitioner")
    numbers = [match.item.item_number for match in matches]

    assert 57506 not in numbers
    assert 88000 not in numbers
    tied = [m.item.item_number for m in matches if m.score == matches[0].score]
    assert tied == sorted(tied)


def test_rank_is_deterministic(ranker: TextRanker) -> None:
    first = ranker.rank(sample_items(), "professional attendance")
    second = ranker.rank(list(reversed(sample_items())), "professional attendance")

    assert first == second


# ---------------------------------------------------------------------------
# Highlighting and relevance
# ---------------------------------------------------------------------------


def test_render_highlight_marks_matching_words() -> None:
    text = "Professional attendance by a general practitioner"
    rendered = render_highlight(text, highlight_spans(text, "attendance"))

    assert rendered == "Professional <mark>attendance</mark> by a general practitioner"


def test_render_highlight_escapes_markup() -> None:
    text = "X-ray <chest> & attendance"
    rendered = render_highlight(text, highlight_spans(text, "attendance"))

    assert rendered == "X-ray &lt;chest&gt; &amp; <mark>attendance</mark>"


def test_highlight_ignores_short_words_and_markers() -> None:
    assert highlight_spans("Item 23 by a GP", "item by") == ()


@pytest.mark.parametrize(
    ("description", "text_query", "expected"),
    [
        ("Dental extraction of a tooth", "dental", 1.0),
        ("Dental extraction of a tooth", "dental implant", 0.5),
        ("Dental extraction of a tooth", "knee replacement", 0.0),
        ("Dental extraction of a tooth", "of a", 1.0),
        ("Dental extraction of a tooth", None, 1.0),
    ],
)
def test_text_relevance(description: str, text_query: str | None, expected: float) -> None:
    assert text_relevance(description, text_query) == pytest.approx(expected)
