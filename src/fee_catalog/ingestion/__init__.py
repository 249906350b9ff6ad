"""Ingestion pipeline components."""

from .pipeline import IngestionPipeline, IngestionResult
from .retry import RetryHandler, RetryPolicy
from .source import (
    ScheduleSource,
    SourceRecord,
    parse_source_date,
    read_schedule_source,
    transform_record,
)

__all__ = [
    "IngestionPipeline",
    "IngestionResult",
    "RetryHandler",
    "RetryPolicy",
    "ScheduleSource",
    "SourceRecord",
    "parse_source_date",
    "read_schedule_source",
    "transform_record",
]
