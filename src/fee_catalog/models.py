"""
Request models for catalog search and ingestion operations.
"""

from __future__ import annotations

from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, Field, field_validator, model_validator

from .storage import CatalogItem

SearchMode: TypeAlias = Literal["text", "semantic", "hybrid"]
SortBy: TypeAlias = Literal["relevance", "fee_asc", "fee_desc", "item_number"]
QueryIntent: TypeAlias = Literal["exact_item_number", "item_number_text", "text_search"]
ProviderFilter: TypeAlias = Literal["G", "S", "AD", "ALL"]

MAX_QUERY_LENGTH = 500
MAX_LIMIT = 100


class SearchFilters(BaseModel):
    """Hard constraints applied to every ranked result."""

    provider_type: ProviderFilter | None = Field(
        default=None, description="Provider type, or ALL for no restriction"
    )
    category: str | None = Field(default=None, description="Exact category code")
    include_inactive: bool = Field(default=False, description="Also return ended items")
    min_fee: float | None = Field(default=None, ge=0, description="Lower schedule fee bound")
    max_fee: float | None = Field(default=None, ge=0, description="Upper schedule fee bound")

    @field_validator("category")
    @classmethod
    def _blank_category_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @model_validator(mode="after")
    def _check_fee_range(self) -> "SearchFilters":
        if (
            self.min_fee is not None
            and self.max_fee is not None
            and self.min_fee > self.max_fee
        ):
            raise ValueError("min_fee must be less than or equal to max_fee")
        return self

    def to_storage_dict(self) -> dict[str, Any]:
        return {
            "provider_type": self.provider_type,
            "category": self.category,
            "include_inactive": self.include_inactive,
            "min_fee": self.min_fee,
            "max_fee": self.max_fee,
        }

    def matches(self, item: CatalogItem) -> bool:
        """True when the item satisfies every constraint."""
        if not self.include_inactive and not item.is_active:
            return False
        if self.provider_type and self.provider_type != "ALL":
            if item.provider_type != self.provider_type:
                return False
        if self.category and item.category != self.category:
            return False
        if self.min_fee is not None or self.max_fee is not None:
            # An item without a fee cannot satisfy a fee bound.
            if item.schedule_fee is None:
                return False
            if self.min_fee is not None and item.schedule_fee < self.min_fee:
                return False
            if self.max_fee is not None and item.schedule_fee > self.max_fee:
                return False
        return True


class SearchRequest(BaseModel):
    """Catalog search request."""

    query: str = Field(description="Free text or item number")
    mode: SearchMode = Field(default="hybrid", description="Requested ranking mode")
    filters: SearchFilters = Field(default_factory=SearchFilters)
    limit: int = Field(default=20, ge=1, le=MAX_LIMIT)
    offset: int = Field(default=0, ge=0)
    sort_by: SortBy = Field(default="relevance")

    @field_validator("query")
    @classmethod
    def _normalize_query(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be empty")
        if len(value) > MAX_QUERY_LENGTH:
            raise ValueError(f"query must be at most {MAX_QUERY_LENGTH} characters")
        return value


class SmartSearchRequest(SearchRequest):
    """Search request that sections results by query intent."""

    limit: int = Field(default=15, ge=1, le=MAX_LIMIT)
    intent: QueryIntent | None = Field(default=None, description="Override detected intent")
    item_number: int | None = Field(default=None, ge=1)
    text_query: str | None = Field(default=None)


class XmlIngestionRequest(BaseModel):
    """Request to parse a schedule source into the catalog."""

    source_ref: str = Field(min_length=1, description="Path to the schedule XML file")
    force_reprocess: bool = False


class EmbeddingGenerationRequest(BaseModel):
    """Request to (re)compute item embeddings."""

    item_ids: list[int] | None = Field(default=None, description="Restrict to these items")
    batch_size: int = Field(default=50, ge=1, le=100)
    force_embeddings: bool = False


class PipelineRequest(XmlIngestionRequest):
    """Parse then embed in a single job."""

    batch_size: int = Field(default=50, ge=1, le=100)
    force_embeddings: bool = False


class LogsQuery(BaseModel):
    limit: int = Field(default=20, ge=1, le=MAX_LIMIT)
    offset: int = Field(default=0, ge=0)
