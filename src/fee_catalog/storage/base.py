"""
Storage interfaces and data models for catalog persistence.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterable, Literal, Protocol, TypeAlias

ProviderType: TypeAlias = Literal["G", "S", "AD"]
JobKind: TypeAlias = Literal["xml-ingest", "embedding-generation", "full-pipeline"]
JobStatus: TypeAlias = Literal["queued", "running", "completed", "failed"]

PROVIDER_TYPES: tuple[str, ...] = ("G", "S", "AD")
JOB_KINDS: tuple[str, ...] = ("xml-ingest", "embedding-generation", "full-pipeline")
JOB_STATUSES: tuple[str, ...] = ("queued", "running", "completed", "failed")
TERMINAL_JOB_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


@dataclass(frozen=True)
class CatalogItem:
    """A billable service entry identified by its item number."""

    item_number: int
    description: str
    short_description: str | None = None
    category: str | None = None
    sub_category: str | None = None
    group_name: str | None = None
    provider_type: str | None = None
    service_type: str | None = None
    schedule_fee: float | None = None
    benefit_75: float | None = None
    benefit_85: float | None = None
    benefit_100: float | None = None
    has_anaesthetic: bool = False
    derived_fee_description: str | None = None
    is_active: bool = True
    item_start_date: date | None = None
    item_end_date: date | None = None
    source_checksum: str | None = None
    embedding: list[float] | None = None
    last_updated: datetime | None = None
    created_at: datetime | None = None

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    def to_dict(self, *, include_embedding: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "item_number": self.item_number,
            "description": self.description,
            "short_description": self.short_description,
            "category": self.category,
            "sub_category": self.sub_category,
            "group_name": self.group_name,
            "provider_type": self.provider_type,
            "service_type": self.service_type,
            "schedule_fee": self.schedule_fee,
            "benefit_75": self.benefit_75,
            "benefit_85": self.benefit_85,
            "benefit_100": self.benefit_100,
            "has_anaesthetic": self.has_anaesthetic,
            "derived_fee_description": self.derived_fee_description,
            "is_active": self.is_active,
            "item_start_date": _iso(self.item_start_date),
            "item_end_date": _iso(self.item_end_date),
            "last_updated": _iso(self.last_updated),
            "created_at": _iso(self.created_at),
        }
        if include_embedding:
            data["embedding"] = self.embedding
        return data


@dataclass(frozen=True)
class IngestionJob:
    """Durable record of a queued pipeline job."""

    id: str
    kind: str
    status: str
    payload: dict[str, Any]
    enqueued_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    cancel_requested: bool = False
    progress: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "status": self.status,
            "payload": self.payload,
            "enqueued_at": _iso(self.enqueued_at),
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "result": self.result,
            "error": self.error,
            "cancel_requested": self.cancel_requested,
            "progress": self.progress,
        }


@dataclass(frozen=True)
class IngestionLog:
    """Append-only audit record of one pipeline run."""

    id: int
    kind: str
    started_at: datetime
    status: str = "processing"
    job_id: str | None = None
    source_ref: str | None = None
    source_checksum: str | None = None
    finished_at: datetime | None = None
    items_parsed: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_skipped: int = 0
    items_failed: int = 0
    items_embedded: int = 0
    errors: list[str] = field(default_factory=list)
    processing_time_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "kind": self.kind,
            "status": self.status,
            "source_ref": self.source_ref,
            "source_checksum": self.source_checksum,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "items_parsed": self.items_parsed,
            "items_created": self.items_created,
            "items_updated": self.items_updated,
            "items_skipped": self.items_skipped,
            "items_failed": self.items_failed,
            "items_embedded": self.items_embedded,
            "errors": list(self.errors),
            "processing_time_ms": self.processing_time_ms,
        }


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def utcnow() -> datetime:
    """Naive UTC timestamp, matching DuckDB TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StorageBackend(Protocol):
    """Protocol for persistence operations used by search, ingestion and jobs."""

    def initialize(self) -> None:
        """Initialize required tables/indexes."""

    def lock_items(self, item_numbers: Iterable[int]) -> AbstractContextManager[None]:
        """Hold mutual exclusion over the given item numbers."""

    # -- catalog items -----------------------------------------------------

    def get_item(self, item_number: int) -> CatalogItem | None:
        """Get an item by item number."""

    def get_items(self, item_numbers: list[int]) -> list[CatalogItem]:
        """Get several items, ordered by item number."""

    def get_item_checksums(self, item_numbers: list[int]) -> dict[int, str | None]:
        """Return stored source checksums for the item numbers that exist."""

    def upsert_items(self, items: list[CatalogItem]) -> tuple[int, int]:
        """Insert or update items keyed by item number. Return (created, updated)."""

    def list_items(
        self,
        *,
        filters: dict[str, Any] | None = None,
    ) -> list[CatalogItem]:
        """List items matching the filters, without vectors."""

    def search_items_semantic(
        self,
        *,
        query_embedding: list[float],
        filters: dict[str, Any] | None = None,
        limit: int = 50,
    ) -> list[tuple[CatalogItem, float]]:
        """Rank embedded items by cosine similarity against a query vector."""

    def list_item_numbers_for_embedding(
        self,
        *,
        item_numbers: list[int] | None = None,
        include_embedded: bool = False,
    ) -> list[int]:
        """Item numbers the embed stage should process."""

    def store_embeddings(self, embeddings: list[tuple[int, list[float]]]) -> int:
        """Bulk-store (item_number, embedding) pairs. Return count written."""

    def item_stats(self) -> dict[str, int]:
        """Totals for all, active and embedded items."""

    def group_counts(
        self,
        field_name: str,
        *,
        active_only: bool = True,
        limit: int | None = None,
        order_by_count: bool = False,
    ) -> list[tuple[str, int]]:
        """Count items grouped by category or provider type."""

    # -- jobs ----------------------------------------------------------------

    def insert_job(self, job: IngestionJob) -> None:
        """Persist a new queued job."""

    def get_job(self, job_id: str) -> IngestionJob | None:
        """Fetch a job record."""

    def list_jobs(self, *, status: str | None = None) -> list[IngestionJob]:
        """List jobs, oldest first."""

    def claim_job(self, job_id: str, *, started_at: datetime) -> IngestionJob | None:
        """Transition queued -> running. None when the job is not queued."""

    def finish_job(
        self,
        job_id: str,
        *,
        status: str,
        finished_at: datetime,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> bool:
        """Transition running -> terminal. False when the job is not running."""

    def update_job_progress(self, job_id: str, progress: dict[str, Any]) -> bool:
        """Record stage progress of a running job. False when it is not running."""

    def request_job_cancel(self, job_id: str) -> bool:
        """Flag a running job so it stops after its current batch."""

    def delete_queued_job(self, job_id: str) -> bool:
        """Remove a job that has not started."""

    def fail_running_jobs(self, *, error: str, finished_at: datetime) -> int:
        """Fail jobs left running by a previous process."""

    def count_jobs_by_status(self) -> dict[str, int]:
        """Counts of jobs per status."""

    def delete_finished_jobs(self, *, status: str, finished_before: datetime) -> int:
        """Delete terminal jobs of a status that finished before a cutoff."""

    # -- ingestion logs --------------------------------------------------------

    def create_log(
        self,
        *,
        kind: str,
        started_at: datetime,
        job_id: str | None = None,
        source_ref: str | None = None,
    ) -> int:
        """Open a log for a pipeline run and return its id."""

    def finalize_log(
        self,
        log_id: int,
        *,
        status: str,
        finished_at: datetime,
        counts: dict[str, int],
        errors: list[str],
        processing_time_ms: int,
        source_checksum: str | None = None,
    ) -> bool:
        """Close an open log. False when it was already finalized."""

    def get_log(self, log_id: int) -> IngestionLog | None:
        """Fetch a log."""

    def list_logs(self, *, limit: int = 20, offset: int = 0) -> tuple[list[IngestionLog], int]:
        """Logs most-recent-first plus the total count."""

    def last_completed_log_at(self) -> datetime | None:
        """Finish time of the newest completed run."""
