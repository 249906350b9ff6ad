from __future__ import annotations

import pytest

from fee_catalog.config import SearchSettings
from fee_catalog.models import SearchFilters
from fee_catalog.search import HybridBlender, RankedItem, resolve_effective_mode, sort_ranked
from fee_catalog.search.blender import apply_filters
from fee_catalog.search.semantic import SemanticMatch, normalize_similarity
from fee_catalog.search.text import TextMatch

from conftest import make_item


def _text(number: int, score: float, **kwargs) -> TextMatch:
    return TextMatch(item=make_item(number, f"Item {number}", **kwargs), score=score)


def _semantic(number: int, score: float, **kwargs) -> SemanticMatch:
    return SemanticMatch(
        item=make_item(number, f"Item {number}", **kwargs), score=score, similarity=score * 2 - 1
    )


@pytest.mark.parametrize(
    ("requested", "available", "expected"),
    [
        ("text", False, "text"),
        ("semantic", False, "text"),
        ("hybrid", False, "text"),
        ("semantic", True, "semantic"),
        ("hybrid", True, "hybrid"),
    ],
)
def test_resolve_effective_mode(requested, available, expected) -> None:
    assert resolve_effective_mode(requested, semantic_available=available) == expected


def test_normalize_similarity_maps_to_unit_interval() -> None:
    assert normalize_similarity(-1.0) == 0.0
    assert normalize_similarity(0.0) == 0.5
    assert normalize_similarity(1.0) == 1.0
    assert normalize_similarity(1.2) == 1.0


# ---------------------------------------------------------------------------
# Blending
# ---------------------------------------------------------------------------


def test_single_mode_passes_scores_through() -> None:
    blender = HybridBlender()

    text_only = blender.blend("text", text_matches=[_text(1, 0.7)])
    semantic_only = blender.blend("semantic", semantic_matches=[_semantic(2, 0.6)])

    assert text_only[0].score == 0.7
    assert text_only[0].matched_by == "text"
    assert semantic_only[0].score == 0.6
    assert semantic_only[0].matched_by == "semantic"


def test_hybrid_weighted_sum_and_single_source_penalty() -> None:
    blender = HybridBlender()

    ranked = blender.blend(
        "hybrid",
        text_matches=[_text(1, 0.5), _text(2, 0.5)],
        semantic_matches=[_semantic(1, 0.5), _semantic(3, 0.5)],
    )
    scores = {entry.item.item_number: entry.score for entry in ranked}

    assert scores[1] == pytest.approx(0.4 * 0.5 + 0.6 * 0.5)
    assert scores[2] == pytest.approx(0.8 * 0.4 * 0.5)
    assert scores[3] == pytest.approx(0.8 * 0.6 * 0.5)
    both = next(entry for entry in ranked if entry.item.item_number == 1)
    assert both.matched_by == "text+semantic"


def test_consensus_beats_single_source_with_equal_raw_scores() -> None:
    blender = HybridBlender()

    ranked = sort_ranked(
        blender.blend(
            "hybrid",
            text_matches=[_text(1, 0.8), _text(2, 0.8)],
            semantic_matches=[_semantic(1, 0.8), _semantic(3, 0.8)],
        ),
        "relevance",
    )

    assert ranked[0].item.item_number == 1


def test_weights_are_normalized() -> None:
    blender = HybridBlender(SearchSettings(text_weight=2.0, semantic_weight=2.0))

    ranked = blender.blend(
        "hybrid",
        text_matches=[_text(1, 1.0)],
        semantic_matches=[_semantic(1, 1.0)],
    )

    assert blender.text_weight == pytest.approx(0.5)
    assert ranked[0].score == pytest.approx(1.0)


def test_each_item_appears_once() -> None:
    ranked = HybridBlender().blend(
        "hybrid",
        text_matches=[_text(5, 0.9)],
        semantic_matches=[_semantic(5, 0.2)],
    )

    assert len(ranked) == 1


# ---------------------------------------------------------------------------
# Filtering and sorting
# ---------------------------------------------------------------------------


def _ranked(number: int, score: float, **kwargs) -> RankedItem:
    return RankedItem(item=make_item(number, f"Item {number}", **kwargs), score=score)


def test_apply_filters_is_hard_and() -> None:
    ranked = [
        _ranked(1, 0.9, provider_type="G", schedule_fee=40.0),
        _ranked(2, 0.8, provider_type="S", schedule_fee=40.0),
        _ranked(3, 0.7, provider_type="G", schedule_fee=None),
        _ranked(4, 0.6, provider_type="G", schedule_fee=10.0, is_active=False),
    ]

    kept = apply_filters(ranked, SearchFilters(provider_type="G", min_fee=20.0))

    assert [entry.item.item_number for entry in kept] == [1]


def test_inactive_items_only_with_flag() -> None:
    ranked = [_ranked(1, 0.9, is_active=False)]

    assert apply_filters(ranked, SearchFilters()) == []
    assert len(apply_filters(ranked, SearchFilters(include_inactive=True))) == 1


def test_sort_by_fee_puts_missing_fees_last() -> None:
    ranked = [
        _ranked(3, 0.9, schedule_fee=None),
        _ranked(2, 0.8, schedule_fee=50.0),
        _ranked(1, 0.7, schedule_fee=10.0),
        _ranked(4, 0.6, schedule_fee=10.0),
    ]

    ascending = [entry.item.item_number for entry in sort_ranked(ranked, "fee_asc")]
    descending = [entry.item.item_number for entry in sort_ranked(ranked, "fee_desc")]

    assert ascending == [1, 4, 2, 3]
    assert descending == [2, 1, 4, 3]


def test_relevance_ties_break_on_item_number() -> None:
    ranked = [_ranked(9, 0.5), _ranked(2, 0.5), _ranked(5, 0.9)]

    ordered = [entry.item.item_number for entry in sort_ranked(ranked, "relevance")]

    assert ordered == [5, 2, 9]
    assert [e.item.item_number for e in sort_ranked(ranked, "item_number")] == [2, 5, 9]
