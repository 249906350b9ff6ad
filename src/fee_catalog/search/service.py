"""
Catalog search service: intent, ranking, blending and sectioning.
"""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from ..config import SearchSettings
from ..embeddings import EmbeddingProvider
from ..errors import CatalogValidationError, ItemNotFoundError, boundary
from ..models import SearchFilters, SearchMode, SearchRequest, SmartSearchRequest
from ..storage import CatalogItem, StorageBackend, utcnow
from .blender import HybridBlender, RankedItem, apply_filters, resolve_effective_mode, sort_ranked
from .intent import ParsedQuery, classify_query
from .sections import MatchType, ResultSectioner, SectionedEntry, match_type_for
from .semantic import SemanticMatch, SemanticRanker
from .text import TextMatch, TextRanker, highlight_spans, render_highlight

SEARCH_MODES: tuple[dict[str, str], ...] = (
    {"value": "text", "label": "Text Search", "description": "Fast keyword-based search"},
    {
        "value": "semantic",
        "label": "Semantic Search",
        "description": "AI-powered meaning-based search",
    },
    {
        "value": "hybrid",
        "label": "Smart Search",
        "description": "Best of both text and semantic search",
    },
)


@dataclass(frozen=True)
class SearchResult:
    """Ranked catalog item as returned to callers."""

    item: CatalogItem
    relevance_score: float
    search_mode: SearchMode
    match_type: MatchType
    highlighted_description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.item.to_dict()
        data.update(
            {
                "relevance_score": self.relevance_score,
                "search_mode": self.search_mode,
                "match_type": self.match_type,
                "highlighted_description": self.highlighted_description,
            }
        )
        return data


@dataclass(frozen=True)
class SearchResponse:
    results: list[SearchResult]
    total: int
    has_more: bool
    requested_mode: SearchMode
    effective_mode: SearchMode
    query: str
    processing_time_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [result.to_dict() for result in self.results],
            "total": self.total,
            "has_more": self.has_more,
            "requested_mode": self.requested_mode,
            "effective_mode": self.effective_mode,
            "query": self.query,
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass(frozen=True)
class SectionedSearchResponse:
    exact_matches: list[SearchResult]
    related_matches: list[SearchResult]
    total: int
    has_more: bool
    requested_mode: SearchMode
    effective_mode: SearchMode
    query: str
    parsed: ParsedQuery
    processing_time_ms: int
    suggestions: list[str] = field(default_factory=list)

    @property
    def intent(self) -> str:
        return self.parsed.intent

    def to_dict(self) -> dict[str, Any]:
        return {
            "exact_matches": [result.to_dict() for result in self.exact_matches],
            "related_matches": [result.to_dict() for result in self.related_matches],
            "total": self.total,
            "has_more": self.has_more,
            "requested_mode": self.requested_mode,
            "effective_mode": self.effective_mode,
            "query": self.query,
            "intent": self.parsed.intent,
            "parsed_query": self.parsed.to_dict(),
            "suggestions": list(self.suggestions),
            "processing_time_ms": self.processing_time_ms,
        }


def search_suggestions(parsed: ParsedQuery) -> list[str]:
    """Alternative phrasings a client can offer for a classified query."""
    if parsed.item_number is None or parsed.intent == "text_search":
        return []
    suggestions = [f"Item {parsed.item_number}"]
    if parsed.intent == "exact_item_number":
        suggestions.append(f"MBS {parsed.item_number}")
    elif parsed.text_query:
        suggestions.append(parsed.text_query)
    return suggestions


class CatalogSearchService:
    """Public search operations over a catalog store.

    Text ranking runs on the caller thread. Semantic ranking runs on a
    long-lived executor and is abandoned after ``semantic_timeout_s``, in
    which case the request proceeds as text-only.
    """

    def __init__(
        self,
        storage: StorageBackend,
        *,
        embedding_provider: EmbeddingProvider | None = None,
        settings: SearchSettings | None = None,
        max_workers: int = 4,
    ) -> None:
        self.storage = storage
        self.settings = settings or SearchSettings()
        self.text_ranker = TextRanker()
        self.semantic_ranker = SemanticRanker(
            storage,
            embedding_provider,
            candidates=self.settings.semantic_candidates,
        )
        self.blender = HybridBlender(self.settings)
        self.sectioner = ResultSectioner(self.settings)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="semantic-search"
        )

    @property
    def semantic_available(self) -> bool:
        return self.semantic_ranker.available

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # -- public operations -------------------------------------------------

    @boundary("search")
    def search(self, request: SearchRequest) -> SearchResponse:
        started = time.perf_counter()
        parsed = classify_query(request.query)
        ranked, effective_mode = self._rank(
            text_query=request.query,
            semantic_query=request.query,
            requested_mode=request.mode,
            filters=request.filters,
        )
        ordered = sort_ranked(ranked, request.sort_by)
        total = len(ordered)
        page = ordered[request.offset : request.offset + request.limit]
        results = [
            self._to_result(
                entry,
                match_type=match_type_for(entry.item.item_number, parsed),
                mode=effective_mode,
                query=request.query,
            )
            for entry in page
        ]
        return SearchResponse(
            results=results,
            total=total,
            has_more=request.offset + request.limit < total,
            requested_mode=request.mode,
            effective_mode=effective_mode,
            query=request.query,
            processing_time_ms=_elapsed_ms(started),
        )

    @boundary("smart_search")
    def smart_search(self, request: SmartSearchRequest) -> SectionedSearchResponse:
        started = time.perf_counter()
        parsed = classify_query(
            request.query,
            intent=request.intent,
            item_number=request.item_number,
            text_query=request.text_query,
        )
        # A bare item number has nothing to embed.
        ranking_mode: SearchMode = "text" if parsed.intent == "exact_item_number" else request.mode
        semantic_query = parsed.text_query or request.query

        ranked, effective_mode = self._rank(
            text_query=request.query,
            semantic_query=semantic_query,
            requested_mode=ranking_mode,
            filters=request.filters,
        )
        ordered = sort_ranked(ranked, request.sort_by)

        direct_item: CatalogItem | None = None
        if parsed.names_item and not any(
            entry.item.item_number == parsed.item_number for entry in ordered
        ):
            fetched = self.storage.get_item(int(parsed.item_number))  # type: ignore[arg-type]
            if fetched is not None and request.filters.matches(fetched):
                direct_item = fetched

        page = self.sectioner.section(
            parsed,
            ordered,
            direct_item=direct_item,
            offset=request.offset,
            limit=request.limit,
        )
        return SectionedSearchResponse(
            exact_matches=[
                self._sectioned_result(entry, effective_mode, request.query)
                for entry in page.exact
            ],
            related_matches=[
                self._sectioned_result(entry, effective_mode, request.query)
                for entry in page.related
            ],
            total=page.total,
            has_more=page.has_more,
            requested_mode=request.mode,
            effective_mode=effective_mode,
            query=request.query,
            parsed=parsed,
            processing_time_ms=_elapsed_ms(started),
            suggestions=search_suggestions(parsed),
        )

    @boundary("get_item")
    def get_item(self, item_number: int) -> dict[str, Any]:
        if item_number < 1:
            raise CatalogValidationError(
                "item_number must be a positive integer", {"item_number": item_number}
            )
        item = self.storage.get_item(item_number)
        if item is None:
            raise ItemNotFoundError(item_number)
        data = item.to_dict()
        data["has_embedding"] = item.has_embedding
        return data

    @boundary("health")
    def health(self) -> dict[str, Any]:
        stats = self.storage.item_stats()
        last_ingestion = self.storage.last_completed_log_at()
        return {
            "status": "ok",
            "timestamp": utcnow().isoformat(),
            **stats,
            "last_ingestion_at": last_ingestion.isoformat() if last_ingestion else None,
            "semantic_available": self.semantic_available,
        }

    @boundary("get_search_filters")
    def get_search_filters(self) -> dict[str, Any]:
        modes = [
            dict(mode)
            for mode in SEARCH_MODES
            if mode["value"] == "text" or self.semantic_available
        ]
        return {
            "categories": [
                {"value": value, "count": count}
                for value, count in self.storage.group_counts("category")
            ],
            "provider_types": [
                {"value": value, "count": count}
                for value, count in self.storage.group_counts("provider_type")
            ],
            "available_modes": modes,
        }

    @boundary("get_item_stats")
    def get_item_stats(self) -> dict[str, Any]:
        stats = self.storage.item_stats()
        return {
            **stats,
            "top_categories": [
                {"category": value, "count": count}
                for value, count in self.storage.group_counts(
                    "category", active_only=False, limit=10, order_by_count=True
                )
            ],
            "provider_types": [
                {"provider_type": value, "count": count}
                for value, count in self.storage.group_counts(
                    "provider_type", active_only=False, order_by_count=True
                )
            ],
        }

    # -- ranking -------------------------------------------------------------

    def _rank(
        self,
        *,
        text_query: str,
        semantic_query: str,
        requested_mode: SearchMode,
        filters: SearchFilters,
    ) -> tuple[list[RankedItem], SearchMode]:
        storage_filters = filters.to_storage_dict()

        semantic_future: Future[list[SemanticMatch] | None] | None = None
        if requested_mode != "text" and self.semantic_available:
            semantic_future = self._executor.submit(
                self.semantic_ranker.rank,
                semantic_query,
                filters=storage_filters,
            )

        text_matches = None
        if requested_mode != "semantic":
            text_matches = self._text_matches(text_query, storage_filters)

        semantic_matches = self._await_semantic(semantic_future)
        effective_mode = resolve_effective_mode(
            requested_mode, semantic_available=semantic_matches is not None
        )
        if effective_mode != requested_mode:
            logger.info("Search downgraded from {} to {}", requested_mode, effective_mode)
        if effective_mode == "text" and text_matches is None:
            text_matches = self._text_matches(text_query, storage_filters)

        blended = self.blender.blend(
            effective_mode,
            text_matches=text_matches,
            semantic_matches=semantic_matches,
        )
        return apply_filters(blended, filters), effective_mode

    def _text_matches(self, query: str, storage_filters: dict[str, Any]) -> list[TextMatch]:
        candidates = self.storage.list_items(filters=storage_filters)
        return self.text_ranker.rank(candidates, query)

    def _await_semantic(
        self, future: Future[list[SemanticMatch] | None] | None
    ) -> list[SemanticMatch] | None:
        if future is None:
            return None
        try:
            return future.result(timeout=self.settings.semantic_timeout_s)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "Semantic ranking timed out after {}s", self.settings.semantic_timeout_s
            )
            return None

    def _sectioned_result(
        self, entry: SectionedEntry, mode: SearchMode, query: str
    ) -> SearchResult:
        return self._to_result(entry.ranked, match_type=entry.match_type, mode=mode, query=query)

    @staticmethod
    def _to_result(
        entry: RankedItem,
        *,
        match_type: MatchType,
        mode: SearchMode,
        query: str,
    ) -> SearchResult:
        description = entry.item.description
        spans = entry.spans or highlight_spans(description, query)
        return SearchResult(
            item=entry.item,
            relevance_score=round(min(max(entry.score, 0.0), 1.0), 4),
            search_mode=mode,
            match_type=match_type,
            highlighted_description=render_highlight(description, spans) if spans else None,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
