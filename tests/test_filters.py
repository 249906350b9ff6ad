from __future__ import annotations

import pytest
from pydantic import ValidationError

from fee_catalog.errors import CatalogValidationError
from fee_catalog.models import SearchFilters, SearchRequest
from fee_catalog.search import FilterParseError, parse_search_filters, supported_filter_syntax


def test_parse_empty_filters() -> None:
    assert parse_search_filters(None) == SearchFilters()
    assert parse_search_filters("   ") == SearchFilters()


def test_parse_combined_conditions() -> None:
    filters = parse_search_filters("provider=g, category=1 and fee>=20 and fee<=100")

    assert filters.provider_type == "G"
    assert filters.category == "1"
    assert filters.min_fee == 20.0
    assert filters.max_fee == 100.0


def test_parse_exact_fee_sets_both_bounds() -> None:
    filters = parse_search_filters("fee=41.40")

    assert filters.min_fee == filters.max_fee == 41.4


def test_parse_quoted_values_and_flags() -> None:
    filters = parse_search_filters("category='T8, surgical' and include_inactive=true")

    assert filters.category == "T8, surgical"
    assert filters.include_inactive is True


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("colour=red", "Unknown filter field"),
        ("category>=1", "only supported for fee"),
        ("fee>=cheap", "non-negative number"),
        ("inactive=maybe", "true or false"),
        ("provider=X", "provider_type"),
        ("min_fee=50, max_fee=10", "min_fee must be less than or equal to max_fee"),
        ("garbage", "Invalid filter syntax"),
    ],
)
def test_invalid_filters(raw: str, message: str) -> None:
    with pytest.raises(FilterParseError, match=message):
        parse_search_filters(raw)


def test_filter_errors_are_validation_errors() -> None:
    assert issubclass(FilterParseError, CatalogValidationError)
    assert "fee>=number" in supported_filter_syntax()


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


def test_search_request_defaults_and_trimming() -> None:
    request = SearchRequest(query="  attendance  ")

    assert request.query == "attendance"
    assert request.mode == "hybrid"
    assert request.limit == 20
    assert request.offset == 0
    assert request.sort_by == "relevance"


@pytest.mark.parametrize(
    "payload",
    [
        {"query": "   "},
        {"query": "x" * 501},
        {"query": "ok", "limit": 0},
        {"query": "ok", "limit": 101},
        {"query": "ok", "offset": -1},
        {"query": "ok", "mode": "fuzzy"},
        {"query": "ok", "filters": {"min_fee": -1}},
        {"query": "ok", "filters": {"min_fee": 50, "max_fee": 10}},
    ],
)
def test_search_request_rejects_invalid_payloads(payload: dict) -> None:
    with pytest.raises(ValidationError):
        SearchRequest(**payload)


def test_blank_category_means_no_category() -> None:
    assert SearchFilters(category="  ").category is None
