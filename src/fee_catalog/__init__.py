"""
FeeCatalog - hybrid search over a medical fee-schedule catalog.

This package stores billable service items in DuckDB, ranks them with a
blend of lexical and Google GenAI embedding similarity, and keeps the
catalog fresh through a durable ingestion job queue.

Example usage:
    >>> from fee_catalog import CatalogSearchService, DuckDBStorage, SearchRequest
    >>> service = CatalogSearchService(DuckDBStorage("catalog.duckdb"))
    >>> response = service.search(SearchRequest(query="consultation", mode="text"))
"""

from .errors import (
    CatalogValidationError,
    FeeCatalogError,
    ItemNotFoundError,
    JobNotFoundError,
)
from .ingestion import IngestionPipeline, IngestionResult
from .jobs import JobQueue
from .models import SearchFilters, SearchRequest, SmartSearchRequest
from .search import CatalogSearchService, SearchResponse, SectionedSearchResponse
from .storage import CatalogItem, DuckDBStorage

__all__ = [
    # Errors
    "FeeCatalogError",
    "CatalogValidationError",
    "ItemNotFoundError",
    "JobNotFoundError",
    # Search
    "CatalogSearchService",
    "SearchFilters",
    "SearchRequest",
    "SmartSearchRequest",
    "SearchResponse",
    "SectionedSearchResponse",
    # Ingestion
    "IngestionPipeline",
    "IngestionResult",
    "JobQueue",
    # Storage
    "CatalogItem",
    "DuckDBStorage",
]
