"""
Ranking helpers for merging text and semantic result sets.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..config import SearchSettings
from ..models import SearchFilters, SearchMode, SortBy
from ..storage import CatalogItem
from .semantic import SemanticMatch
from .text import TextMatch


@dataclass(frozen=True)
class RankedItem:
    """Merged retrieval candidate for a catalog item."""

    item: CatalogItem
    score: float
    text_score: float | None = None
    semantic_score: float | None = None
    spans: tuple[tuple[int, int], ...] = ()

    @property
    def matched_by(self) -> str:
        if self.text_score is not None and self.semantic_score is not None:
            return "text+semantic"
        if self.semantic_score is not None:
            return "semantic"
        return "text"


def resolve_effective_mode(requested: SearchMode, *, semantic_available: bool) -> SearchMode:
    """Downgrade semantic and hybrid requests to text when vectors are unavailable."""
    if requested in ("semantic", "hybrid") and not semantic_available:
        return "text"
    return requested


class HybridBlender:
    """Merge ranked lists by item number, filter, and sort."""

    def __init__(self, settings: SearchSettings | None = None) -> None:
        self.settings = settings or SearchSettings()
        total = self.settings.text_weight + self.settings.semantic_weight
        self.text_weight = self.settings.text_weight / total
        self.semantic_weight = self.settings.semantic_weight / total

    def blend(
        self,
        mode: SearchMode,
        *,
        text_matches: list[TextMatch] | None = None,
        semantic_matches: list[SemanticMatch] | None = None,
    ) -> list[RankedItem]:
        text_matches = text_matches or []
        semantic_matches = semantic_matches or []

        if mode == "text":
            return [
                RankedItem(item=m.item, score=m.score, text_score=m.score, spans=m.spans)
                for m in text_matches
            ]
        if mode == "semantic":
            return [
                RankedItem(item=m.item, score=m.score, semantic_score=m.score)
                for m in semantic_matches
            ]

        penalty = self.settings.single_source_penalty
        merged: dict[int, RankedItem] = {}
        text_by_number = {m.item.item_number: m for m in text_matches}
        semantic_by_number = {m.item.item_number: m for m in semantic_matches}

        for number in text_by_number.keys() | semantic_by_number.keys():
            text = text_by_number.get(number)
            semantic = semantic_by_number.get(number)
            if text is not None and semantic is not None:
                score = self.text_weight * text.score + self.semantic_weight * semantic.score
            elif text is not None:
                score = penalty * self.text_weight * text.score
            else:
                assert semantic is not None
                score = penalty * self.semantic_weight * semantic.score
            item = text.item if text is not None else semantic.item  # type: ignore[union-attr]
            merged[number] = RankedItem(
                item=item,
                score=round(score, 6),
                text_score=text.score if text is not None else None,
                semantic_score=semantic.score if semantic is not None else None,
                spans=text.spans if text is not None else (),
            )
        return list(merged.values())


def apply_filters(ranked: list[RankedItem], filters: SearchFilters) -> list[RankedItem]:
    """Hard AND of every filter constraint."""
    return [entry for entry in ranked if filters.matches(entry.item)]


def sort_ranked(ranked: list[RankedItem], sort_by: SortBy) -> list[RankedItem]:
    """Sort merged results; ties always fall back to ascending item number."""
    if sort_by == "item_number":
        return sorted(ranked, key=lambda entry: entry.item.item_number)
    if sort_by == "fee_asc":
        return sorted(
            ranked,
            key=lambda entry: (
                entry.item.schedule_fee is None,
                entry.item.schedule_fee or 0.0,
                entry.item.item_number,
            ),
        )
    if sort_by == "fee_desc":
        return sorted(
            ranked,
            key=lambda entry: (
                entry.item.schedule_fee is None,
                -(entry.item.schedule_fee or 0.0),
                entry.item.item_number,
            ),
        )
    return sorted(ranked, key=lambda entry: (-entry.score, entry.item.item_number))
