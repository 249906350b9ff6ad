"""
Durable job queue for ingestion work.

Job records live in the catalog store; a thread pool executes them through
the ingestion pipeline. Every state change is a conditional update, so a job
is claimed once and reaches a terminal status once.
"""

from __future__ import annotations

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from .config import PipelineSettings
from .errors import CatalogValidationError, JobNotFoundError, boundary
from .ingestion import IngestionPipeline
from .models import (
    EmbeddingGenerationRequest,
    LogsQuery,
    PipelineRequest,
    XmlIngestionRequest,
)
from .storage import IngestionJob, StorageBackend, utcnow

INTERRUPTED_ERROR = "interrupted"


class JobQueue:
    """Enqueue, execute and report on ingestion jobs."""

    def __init__(
        self,
        storage: StorageBackend,
        pipeline: IngestionPipeline,
        *,
        settings: PipelineSettings | None = None,
        autostart: bool = True,
    ) -> None:
        self.storage = storage
        self.pipeline = pipeline
        self.settings = settings or PipelineSettings()
        self._executor: ThreadPoolExecutor | None = None
        if autostart:
            self.start()

    # -- lifecycle -----------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._executor is not None

    def start(self) -> None:
        """Start workers and recover jobs left behind by a previous process."""
        if self._executor is not None:
            return
        interrupted = self.storage.fail_running_jobs(
            error=INTERRUPTED_ERROR, finished_at=utcnow()
        )
        if interrupted:
            logger.warning("Marked {} interrupted job(s) as failed", interrupted)
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.max_workers, thread_name_prefix="ingestion-worker"
        )
        pending = self.storage.list_jobs(status="queued")
        for job in pending:
            self._executor.submit(self.run_job, job.id)
        if pending:
            logger.info("Resubmitted {} queued job(s)", len(pending))

    def shutdown(self, *, wait: bool = True) -> None:
        if self._executor is None:
            return
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
        self._executor = None

    # -- enqueue -------------------------------------------------------------

    @boundary("queue_xml_ingestion")
    def queue_xml_ingestion(self, source_ref: str, force_reprocess: bool = False) -> str:
        request = XmlIngestionRequest(source_ref=source_ref, force_reprocess=force_reprocess)
        return self._enqueue("xml-ingest", request.model_dump())

    @boundary("queue_embedding_generation")
    def queue_embedding_generation(
        self,
        item_ids: list[int] | None = None,
        batch_size: int = 50,
        force_embeddings: bool = False,
    ) -> str:
        request = EmbeddingGenerationRequest(
            item_ids=item_ids,
            batch_size=batch_size,
            force_embeddings=force_embeddings,
        )
        return self._enqueue("embedding-generation", request.model_dump())

    @boundary("queue_full_pipeline")
    def queue_full_pipeline(
        self,
        source_ref: str,
        force_reprocess: bool = False,
        *,
        force_embeddings: bool = False,
        batch_size: int = 50,
    ) -> str:
        request = PipelineRequest(
            source_ref=source_ref,
            force_reprocess=force_reprocess,
            force_embeddings=force_embeddings,
            batch_size=batch_size,
        )
        return self._enqueue("full-pipeline", request.model_dump())

    def _enqueue(self, kind: str, payload: dict[str, Any]) -> str:
        job = IngestionJob(
            id=uuid.uuid4().hex,
            kind=kind,
            status="queued",
            payload=payload,
            enqueued_at=utcnow(),
        )
        self.storage.insert_job(job)
        logger.info("Queued {} job {}", kind, job.id)
        if self._executor is not None:
            self._executor.submit(self.run_job, job.id)
        return job.id

    # -- execution -----------------------------------------------------------

    def run_job(self, job_id: str) -> IngestionJob | None:
        """Claim and execute one job; None when it was removed or already claimed."""
        job = self.storage.claim_job(job_id, started_at=utcnow())
        if job is None:
            logger.debug("Job {} is no longer queued, skipping", job_id)
            return None

        logger.info("Running {} job {}", job.kind, job.id)
        try:
            result = self.pipeline.run(
                job.kind,
                job.payload,
                job_id=job.id,
                should_continue=lambda: not self._cancel_requested(job.id),
            )
        except Exception:
            logger.exception("Job {} crashed", job.id)
            self.storage.finish_job(
                job.id, status="failed", finished_at=utcnow(), error="Internal error"
            )
        else:
            self.storage.finish_job(
                job.id,
                status="completed" if result.succeeded else "failed",
                finished_at=utcnow(),
                result=result.to_dict(),
                error=result.error,
            )
        return self.storage.get_job(job.id)

    def wait(self, job_id: str, *, timeout: float = 60.0, poll_interval: float = 0.05) -> IngestionJob:
        """Block until a job reaches a terminal status."""
        deadline = time.monotonic() + timeout
        while True:
            job = self.storage.get_job(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.is_terminal:
                return job
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Job {job_id} did not finish within {timeout}s")
            time.sleep(poll_interval)

    def _cancel_requested(self, job_id: str) -> bool:
        job = self.storage.get_job(job_id)
        return job is None or job.cancel_requested

    # -- status & maintenance ------------------------------------------------

    @boundary("get_job_status")
    def get_job_status(self, job_id: str) -> dict[str, Any]:
        job = self.storage.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job.to_dict()

    @boundary("cancel_job")
    def cancel_job(self, job_id: str) -> dict[str, Any]:
        """Remove a queued job, or ask a running one to stop after its batch."""
        if self.storage.delete_queued_job(job_id):
            logger.info("Removed queued job {}", job_id)
            return {"job_id": job_id, "status": "removed"}
        if self.storage.request_job_cancel(job_id):
            logger.info("Cancellation requested for job {}", job_id)
            return {"job_id": job_id, "status": "cancel_requested"}
        job = self.storage.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        raise CatalogValidationError(
            f"Job {job_id} already {job.status}", {"job_id": job_id, "status": job.status}
        )

    @boundary("get_queue_stats")
    def get_queue_stats(self) -> dict[str, int]:
        counts = self.storage.count_jobs_by_status()
        stats = {
            "waiting": counts.get("queued", 0),
            "active": counts.get("running", 0),
            "completed": counts.get("completed", 0),
            "failed": counts.get("failed", 0),
        }
        stats["total"] = sum(stats.values())
        return stats

    @boundary("get_ingestion_logs")
    def get_ingestion_logs(self, limit: int = 20, offset: int = 0) -> dict[str, Any]:
        query = LogsQuery(limit=limit, offset=offset)
        logs, total = self.storage.list_logs(limit=query.limit, offset=query.offset)
        return {
            "logs": [log.to_dict() for log in logs],
            "total": total,
            "has_more": query.offset + query.limit < total,
        }

    @boundary("clean_jobs")
    def clean_jobs(self, now: datetime | None = None) -> int:
        """Delete terminal jobs past retention; queued and running jobs are kept."""
        current = now or utcnow()
        removed = self.storage.delete_finished_jobs(
            status="completed",
            finished_before=current - timedelta(seconds=self.settings.completed_retention_s),
        )
        removed += self.storage.delete_finished_jobs(
            status="failed",
            finished_before=current - timedelta(seconds=self.settings.failed_retention_s),
        )
        if removed:
            logger.info("Cleaned {} finished job(s)", removed)
        return removed
