"""
Split ranked results into exact and related sections by query intent.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal, TypeAlias

from ..config import SearchSettings
from ..storage import CatalogItem
from .blender import RankedItem
from .intent import ParsedQuery
from .text import text_relevance

MatchType: TypeAlias = Literal["exact", "partial", "text"]

EXACT_SECTION_SIZE = 1


def match_type_for(item_number: int, parsed: ParsedQuery) -> MatchType:
    """Tag an item relative to the item number the query named, if any."""
    if parsed.item_number is None or parsed.intent == "text_search":
        return "text"
    requested = str(parsed.item_number)
    number = str(item_number)
    if number == requested:
        return "exact"
    if number.startswith(requested):
        return "partial"
    return "text"


@dataclass(frozen=True)
class SectionedEntry:
    ranked: RankedItem
    match_type: MatchType


@dataclass(frozen=True)
class SectionedPage:
    exact: list[SectionedEntry]
    related: list[SectionedEntry]
    total: int
    has_more: bool


class ResultSectioner:
    """Promote at most one exact match ahead of the ranked related items."""

    def __init__(self, settings: SearchSettings | None = None) -> None:
        self.settings = settings or SearchSettings()

    def section(
        self,
        parsed: ParsedQuery,
        ranked: list[RankedItem],
        *,
        direct_item: CatalogItem | None = None,
        offset: int = 0,
        limit: int = 15,
    ) -> SectionedPage:
        """Section a ranked, filtered list and paginate the related items.

        The exact entry is returned on every page; the related section gets
        what is left of ``limit`` and ``offset`` applies to it alone.
        ``direct_item`` is the item fetched by number when ranking did not
        return it; the caller has already checked it against the filters.
        """
        exact_entry, remaining = self._pick_exact(parsed, ranked, direct_item)
        exact = [exact_entry] if exact_entry is not None else []

        related: list[SectionedEntry] = []
        for entry in remaining:
            kind = match_type_for(entry.item.item_number, parsed)
            # Only the promoted entry may carry the exact tag.
            related.append(SectionedEntry(ranked=entry, match_type="text" if kind == "exact" else kind))

        total = len(exact) + len(related)
        budget = limit - len(exact)
        return SectionedPage(
            exact=exact,
            related=related[offset : offset + budget],
            total=total,
            has_more=offset + limit < total,
        )

    def _pick_exact(
        self,
        parsed: ParsedQuery,
        ranked: list[RankedItem],
        direct_item: CatalogItem | None,
    ) -> tuple[SectionedEntry | None, list[RankedItem]]:
        if parsed.names_item:
            number = parsed.item_number
            candidate = next((entry for entry in ranked if entry.item.item_number == number), None)
            if candidate is None and direct_item is not None and direct_item.item_number == number:
                candidate = RankedItem(item=direct_item, score=1.0, text_score=1.0)
            if candidate is None:
                return None, list(ranked)
            if parsed.intent == "item_number_text":
                relevance = text_relevance(candidate.item.description, parsed.text_query)
                if relevance <= self.settings.item_text_relevance_threshold:
                    return None, list(ranked)
            promoted = replace(candidate, score=1.0)
            remaining = [entry for entry in ranked if entry.item.item_number != number]
            return SectionedEntry(ranked=promoted, match_type="exact"), remaining

        if not ranked:
            return None, []
        best = min(ranked, key=lambda entry: (-entry.score, entry.item.item_number))
        if best.score >= self.settings.high_confidence_threshold:
            remaining = [entry for entry in ranked if entry is not best]
            return SectionedEntry(ranked=best, match_type="exact"), remaining
        return None, list(ranked)
