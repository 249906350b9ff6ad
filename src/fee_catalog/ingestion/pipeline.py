"""
Ingestion pipeline orchestration.

Stages run in order for a full pipeline and can be invoked on their own:

* parse: read the schedule source, validate records, upsert changed items;
* embed: compute vectors for items that lack one (or a forced subset);
* finalize: close the ingestion log with aggregate counts.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from ..config import PipelineSettings
from ..embeddings import EmbeddingProvider, item_embedding_text
from ..errors import (
    EmbeddingUnavailableError,
    FeeCatalogError,
    JobCancelledError,
    RecordValidationError,
)
from ..storage import CatalogItem, StorageBackend, utcnow
from .retry import RetryHandler, RetryPolicy
from .source import read_schedule_source, transform_record

MAX_RECORDED_ERRORS = 100
DEFAULT_EMBED_BATCH_SIZE = 50
MAX_EMBED_BATCH_SIZE = 100


@dataclass(frozen=True)
class IngestionResult:
    """Summary output for a pipeline run."""

    log_id: int
    kind: str
    status: str
    items_parsed: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_skipped: int = 0
    items_failed: int = 0
    items_embedded: int = 0
    errors: list[str] = field(default_factory=list)
    error: str | None = None
    source_checksum: str | None = None
    processing_time_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "log_id": self.log_id,
            "kind": self.kind,
            "status": self.status,
            "items_parsed": self.items_parsed,
            "items_created": self.items_created,
            "items_updated": self.items_updated,
            "items_skipped": self.items_skipped,
            "items_failed": self.items_failed,
            "items_embedded": self.items_embedded,
            "errors": list(self.errors),
            "error": self.error,
            "source_checksum": self.source_checksum,
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass
class _RunState:
    counts: dict[str, int] = field(
        default_factory=lambda: {
            "items_parsed": 0,
            "items_created": 0,
            "items_updated": 0,
            "items_skipped": 0,
            "items_failed": 0,
            "items_embedded": 0,
        }
    )
    errors: list[str] = field(default_factory=list)
    fatal: str | None = None
    source_checksum: str | None = None

    def add(self, name: str, amount: int) -> None:
        self.counts[name] += amount

    def record_error(self, message: str) -> None:
        if len(self.errors) < MAX_RECORDED_ERRORS:
            self.errors.append(message)


def _chunks(values: list[Any], size: int) -> list[list[Any]]:
    return [values[start : start + size] for start in range(0, len(values), size)]


class IngestionPipeline:
    """Build and refresh the catalog from a schedule source."""

    def __init__(
        self,
        storage: StorageBackend,
        embedding_provider: EmbeddingProvider | None = None,
        *,
        settings: PipelineSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.storage = storage
        self.embedding_provider = embedding_provider
        self.settings = settings or PipelineSettings()
        self._retry = RetryHandler(
            RetryPolicy(
                max_attempts=self.settings.retry_attempts,
                base_delay_s=self.settings.backoff_base_s,
                max_delay_s=self.settings.backoff_max_s,
            ),
            sleep=sleep,
        )

    # -- entry points --------------------------------------------------------

    def run(
        self,
        kind: str,
        payload: dict[str, Any],
        *,
        job_id: str | None = None,
        should_continue: Callable[[], bool] | None = None,
    ) -> IngestionResult:
        """Dispatch a job payload to the matching stage chain."""
        if kind == "xml-ingest":
            return self.run_xml_ingestion(
                str(payload["source_ref"]),
                force_reprocess=bool(payload.get("force_reprocess", False)),
                job_id=job_id,
                should_continue=should_continue,
            )
        if kind == "embedding-generation":
            return self.run_embedding_generation(
                item_ids=payload.get("item_ids"),
                batch_size=int(payload.get("batch_size") or DEFAULT_EMBED_BATCH_SIZE),
                force_embeddings=bool(payload.get("force_embeddings", False)),
                job_id=job_id,
                should_continue=should_continue,
            )
        if kind == "full-pipeline":
            return self.run_full_pipeline(
                str(payload["source_ref"]),
                force_reprocess=bool(payload.get("force_reprocess", False)),
                force_embeddings=bool(payload.get("force_embeddings", False)),
                batch_size=int(payload.get("batch_size") or DEFAULT_EMBED_BATCH_SIZE),
                job_id=job_id,
                should_continue=should_continue,
            )
        raise ValueError(f"Unknown job kind: {kind!r}")

    def run_xml_ingestion(
        self,
        source_ref: str,
        *,
        force_reprocess: bool = False,
        job_id: str | None = None,
        should_continue: Callable[[], bool] | None = None,
    ) -> IngestionResult:
        def stages(state: _RunState, keep_going: Callable[[], bool]) -> None:
            self._parse_stage(state, source_ref, force_reprocess, keep_going, job_id)

        return self._execute("xml-ingest", stages, job_id, source_ref, should_continue)

    def run_embedding_generation(
        self,
        *,
        item_ids: list[int] | None = None,
        batch_size: int = DEFAULT_EMBED_BATCH_SIZE,
        force_embeddings: bool = False,
        job_id: str | None = None,
        should_continue: Callable[[], bool] | None = None,
    ) -> IngestionResult:
        def stages(state: _RunState, keep_going: Callable[[], bool]) -> None:
            self._embed_stage(state, item_ids, batch_size, force_embeddings, keep_going, job_id)

        return self._execute("embedding-generation", stages, job_id, None, should_continue)

    def run_full_pipeline(
        self,
        source_ref: str,
        *,
        force_reprocess: bool = False,
        force_embeddings: bool = False,
        batch_size: int = DEFAULT_EMBED_BATCH_SIZE,
        job_id: str | None = None,
        should_continue: Callable[[], bool] | None = None,
    ) -> IngestionResult:
        def stages(state: _RunState, keep_going: Callable[[], bool]) -> None:
            self._parse_stage(state, source_ref, force_reprocess, keep_going, job_id)
            if not keep_going():
                raise JobCancelledError(job_id)
            self._embed_stage(state, None, batch_size, force_embeddings, keep_going, job_id)

        return self._execute("full-pipeline", stages, job_id, source_ref, should_continue)

    # -- orchestration -------------------------------------------------------

    def _execute(
        self,
        kind: str,
        stages: Callable[[_RunState, Callable[[], bool]], None],
        job_id: str | None,
        source_ref: str | None,
        should_continue: Callable[[], bool] | None,
    ) -> IngestionResult:
        started = time.perf_counter()
        keep_going = should_continue or (lambda: True)
        log_id = self.storage.create_log(
            kind=kind,
            started_at=utcnow(),
            job_id=job_id,
            source_ref=source_ref,
        )
        logger.info("Pipeline {} started (log {}, job {})", kind, log_id, job_id)

        state = _RunState()
        try:
            stages(state, keep_going)
        except JobCancelledError as exc:
            state.fatal = exc.message
            logger.warning("Pipeline {} cancelled (job {})", kind, job_id)
        except FeeCatalogError as exc:
            state.fatal = exc.message
            logger.error("Pipeline {} failed: {}", kind, exc.message)
        except Exception as exc:
            # Partial progress stays committed; the run is closed as failed.
            state.fatal = f"Unexpected error: {exc}"
            logger.exception("Pipeline {} crashed", kind)

        if state.fatal is not None:
            state.record_error(state.fatal)
        status = "failed" if state.fatal is not None else "completed"
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        self.storage.finalize_log(
            log_id,
            status=status,
            finished_at=utcnow(),
            counts=state.counts,
            errors=state.errors,
            processing_time_ms=elapsed_ms,
            source_checksum=state.source_checksum,
        )
        logger.info(
            "Pipeline {} {} in {}ms: {}",
            kind,
            status,
            elapsed_ms,
            ", ".join(f"{name}={value}" for name, value in state.counts.items()),
        )
        return IngestionResult(
            log_id=log_id,
            kind=kind,
            status=status,
            errors=list(state.errors),
            error=state.fatal,
            source_checksum=state.source_checksum,
            processing_time_ms=elapsed_ms,
            **state.counts,
        )

    # -- stages ----------------------------------------------------------------

    def _parse_stage(
        self,
        state: _RunState,
        source_ref: str,
        force_reprocess: bool,
        keep_going: Callable[[], bool],
        job_id: str | None,
    ) -> None:
        source = read_schedule_source(source_ref)
        state.source_checksum = source.checksum
        chunks = _chunks(source.records, self.settings.parse_chunk_size)
        logger.info("Parsing {} records from {}", len(source.records), source.path)
        self._report_progress(state, job_id, "parse", 0, len(chunks))

        for index, chunk in enumerate(chunks, start=1):
            if not keep_going():
                raise JobCancelledError(job_id)

            parsed: dict[int, CatalogItem] = {}
            for record in chunk:
                state.add("items_parsed", 1)
                try:
                    item = transform_record(record)
                except RecordValidationError as exc:
                    state.add("items_failed", 1)
                    state.record_error(exc.message)
                    logger.warning("Skipping record {}: {}", record.position, exc.message)
                    continue
                if item.item_number in parsed:
                    # Later records for the same item win.
                    state.add("items_skipped", 1)
                parsed[item.item_number] = item

            if parsed:
                self._write_chunk(state, list(parsed.values()), force_reprocess, index)
            logger.debug("Parse chunk {}/{} done", index, len(chunks))
            self._report_progress(state, job_id, "parse", index, len(chunks))

    def _write_chunk(
        self,
        state: _RunState,
        items: list[CatalogItem],
        force_reprocess: bool,
        index: int,
    ) -> None:
        numbers = [item.item_number for item in items]
        try:
            with self.storage.lock_items(numbers):
                stored = self.storage.get_item_checksums(numbers)
                changed = [
                    item
                    for item in items
                    if force_reprocess
                    or item.item_number not in stored
                    or stored[item.item_number] != item.source_checksum
                ]
                created, updated = self.storage.upsert_items(changed)
        except FeeCatalogError:
            raise
        except Exception as exc:
            state.add("items_failed", len(items))
            state.record_error(f"Parse chunk {index} could not be stored: {exc}")
            logger.error("Parse chunk {} could not be stored: {}", index, exc)
            return
        state.add("items_created", created)
        state.add("items_updated", updated)
        state.add("items_skipped", len(items) - len(changed))

    def _embed_stage(
        self,
        state: _RunState,
        item_ids: list[int] | None,
        batch_size: int,
        force_embeddings: bool,
        keep_going: Callable[[], bool],
        job_id: str | None,
    ) -> None:
        provider = self.embedding_provider
        if provider is None:
            raise EmbeddingUnavailableError("No embedding provider configured")
        batch_size = max(1, min(int(batch_size), MAX_EMBED_BATCH_SIZE))

        if item_ids:
            requested = sorted({int(number) for number in item_ids})
            targets = self.storage.list_item_numbers_for_embedding(
                item_numbers=requested, include_embedded=True
            )
            missing = sorted(set(requested) - set(targets))
            if missing:
                state.add("items_failed", len(missing))
                state.record_error(f"Unknown item numbers: {missing}")
        else:
            targets = self.storage.list_item_numbers_for_embedding(
                include_embedded=force_embeddings
            )

        batches = _chunks(targets, batch_size)
        logger.info("Embedding {} items in {} batches", len(targets), len(batches))
        self._report_progress(state, job_id, "embed", 0, len(batches))
        for index, batch in enumerate(batches, start=1):
            if not keep_going():
                raise JobCancelledError(job_id)
            try:
                written = self._embed_batch(provider, batch, index)
            except FeeCatalogError as exc:
                message = exc.message
            except Exception as exc:
                message = str(exc)
            else:
                state.add("items_embedded", written)
                logger.debug("Embed batch {}/{}: {} vectors", index, len(batches), written)
                self._report_progress(state, job_id, "embed", index, len(batches))
                continue
            state.add("items_failed", len(batch))
            state.record_error(f"Embed batch {index} failed: {message}")
            logger.error("Embed batch {} failed after retries: {}", index, message)
            self._report_progress(state, job_id, "embed", index, len(batches))

    def _embed_batch(self, provider: EmbeddingProvider, batch: list[int], index: int) -> int:
        with self.storage.lock_items(batch):
            items = self.storage.get_items(batch)
        if not items:
            return 0

        # No item locks are held across the provider call and its backoff.
        texts = [item_embedding_text(item) for item in items]
        vectors = self._retry.call(
            lambda: provider.embed_texts(texts),
            operation_name=f"embed batch {index}",
        )

        numbers = [item.item_number for item in items]
        with self.storage.lock_items(numbers):
            current = self.storage.get_item_checksums(numbers)
            fresh = [
                (item.item_number, vector)
                for item, vector in zip(items, vectors)
                if item.item_number in current
                and current[item.item_number] == item.source_checksum
            ]
            if len(fresh) < len(items):
                logger.debug(
                    "Embed batch {}: dropped {} vector(s) for items changed meanwhile",
                    index,
                    len(items) - len(fresh),
                )
            return self.storage.store_embeddings(fresh)

    def _report_progress(
        self,
        state: _RunState,
        job_id: str | None,
        stage: str,
        done: int,
        total: int,
    ) -> None:
        """Write stage progress to the job record; runs without a job are silent."""
        if job_id is None:
            return
        self.storage.update_job_progress(
            job_id,
            {"stage": stage, "done": done, "total": total, **state.counts},
        )
