"""Search helpers for the fee catalog."""

from .blender import HybridBlender, RankedItem, resolve_effective_mode, sort_ranked
from .filters import FilterParseError, parse_search_filters, supported_filter_syntax
from .intent import ParsedQuery, classify_query
from .sections import ResultSectioner, SectionedPage, match_type_for
from .semantic import SemanticMatch, SemanticRanker
from .service import (
    CatalogSearchService,
    SearchResponse,
    SearchResult,
    SectionedSearchResponse,
)
from .text import TextMatch, TextRanker, render_highlight, text_relevance

__all__ = [
    "HybridBlender",
    "RankedItem",
    "resolve_effective_mode",
    "sort_ranked",
    "FilterParseError",
    "parse_search_filters",
    "supported_filter_syntax",
    "ParsedQuery",
    "classify_query",
    "ResultSectioner",
    "SectionedPage",
    "match_type_for",
    "SemanticMatch",
    "SemanticRanker",
    "CatalogSearchService",
    "SearchResponse",
    "SearchResult",
    "SectionedSearchResponse",
    "TextMatch",
    "TextRanker",
    "render_highlight",
    "text_relevance",
]
