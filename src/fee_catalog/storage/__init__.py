"""Storage backends for the fee catalog."""

from .base import (
    CatalogItem,
    IngestionJob,
    IngestionLog,
    StorageBackend,
    utcnow,
)
from .duckdb import DuckDBStorage

__all__ = [
    "CatalogItem",
    "IngestionJob",
    "IngestionLog",
    "StorageBackend",
    "DuckDBStorage",
    "utcnow",
]
