"""
FastAPI server for the fee catalog.

Exposes search, item lookup and health endpoints plus the admin endpoints
that queue and inspect ingestion jobs.
"""

from __future__ import annotations

import asyncio
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from .config import PipelineSettings, SearchSettings, resolve_db_path
from .embeddings import EmbeddingProvider
from .errors import (
    CatalogValidationError,
    DependencyUnavailableError,
    FeeCatalogError,
    NotFoundError,
)
from .ingestion import IngestionPipeline
from .jobs import JobQueue
from .models import (
    EmbeddingGenerationRequest,
    PipelineRequest,
    SearchRequest,
    SmartSearchRequest,
    XmlIngestionRequest,
)
from .search import CatalogSearchService
from .storage import DuckDBStorage, StorageBackend


@dataclass
class CatalogContext:
    """Long-lived services shared by every request."""

    storage: StorageBackend
    search: CatalogSearchService
    jobs: JobQueue

    @classmethod
    def build(
        cls,
        storage: StorageBackend,
        *,
        embedding_provider: EmbeddingProvider | None = None,
        search_settings: SearchSettings | None = None,
        pipeline_settings: PipelineSettings | None = None,
        autostart: bool = True,
    ) -> "CatalogContext":
        pipeline_settings = pipeline_settings or PipelineSettings()
        pipeline = IngestionPipeline(
            storage, embedding_provider, settings=pipeline_settings
        )
        return cls(
            storage=storage,
            search=CatalogSearchService(
                storage,
                embedding_provider=embedding_provider,
                settings=search_settings,
            ),
            jobs=JobQueue(storage, pipeline, settings=pipeline_settings, autostart=autostart),
        )

    @classmethod
    def from_env(cls, db_path: str | None = None) -> "CatalogContext":
        storage = DuckDBStorage(resolve_db_path(db_path))
        return cls.build(
            storage,
            embedding_provider=EmbeddingProvider.from_env(),
            search_settings=SearchSettings.from_env(),
            pipeline_settings=PipelineSettings.from_env(),
        )

    def close(self) -> None:
        self.jobs.shutdown(wait=False)
        self.search.close()
        close = getattr(self.storage, "close", None)
        if callable(close):
            close()


_context: CatalogContext | None = None
_context_lock = threading.Lock()


def get_context() -> CatalogContext:
    """Return the shared services, building them from the environment once."""
    global _context
    with _context_lock:
        if _context is None:
            _context = CatalogContext.from_env()
            logger.info("Catalog services ready")
        return _context


def set_context(context: CatalogContext | None) -> None:
    """Install (or clear) the shared services."""
    global _context
    with _context_lock:
        _context = context


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    with _context_lock:
        context = _context
    if context is not None:
        context.close()
        set_context(None)


app = FastAPI(
    title="FeeCatalog",
    description="Hybrid search over a medical fee-schedule catalog",
    lifespan=lifespan,
)


# -- error mapping -------------------------------------------------------------


@app.exception_handler(RequestValidationError)
async def handle_request_validation(_: Request, exc: RequestValidationError) -> JSONResponse:
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = str(error.get("msg", "invalid value")).removeprefix("Value error, ")
        parts.append(f"{location}: {message}" if location else message)
    return JSONResponse({"error": "; ".join(parts) or "Invalid request"}, status_code=400)


@app.exception_handler(FeeCatalogError)
async def handle_catalog_error(_: Request, exc: FeeCatalogError) -> JSONResponse:
    if isinstance(exc, CatalogValidationError):
        return JSONResponse({"error": exc.message}, status_code=400)
    if isinstance(exc, NotFoundError):
        return JSONResponse({"error": exc.message}, status_code=404)
    if isinstance(exc, DependencyUnavailableError):
        return JSONResponse({"error": exc.message}, status_code=503)
    return JSONResponse({"error": "Internal error"}, status_code=500)


@app.exception_handler(Exception)
async def handle_unexpected(_: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error("Unhandled server error")
    return JSONResponse({"error": "Internal error"}, status_code=500)


# -- public endpoints ------------------------------------------------------------


@app.post("/api/search")
async def search(request: SearchRequest) -> dict[str, Any]:
    """Rank catalog items for a query."""
    context = get_context()
    response = await asyncio.to_thread(context.search.search, request)
    return response.to_dict()


@app.post("/api/search/smart")
async def smart_search(request: SmartSearchRequest) -> dict[str, Any]:
    """Rank catalog items and split them into exact and related sections."""
    context = get_context()
    response = await asyncio.to_thread(context.search.smart_search, request)
    return response.to_dict()


@app.get("/api/search/filters")
async def search_filters() -> dict[str, Any]:
    context = get_context()
    return await asyncio.to_thread(context.search.get_search_filters)


@app.get("/api/items/{item_number}")
async def get_item(item_number: int) -> dict[str, Any]:
    context = get_context()
    return await asyncio.to_thread(context.search.get_item, item_number)


@app.get("/api/health")
async def health() -> dict[str, Any]:
    context = get_context()
    return await asyncio.to_thread(context.search.health)


# -- admin endpoints -------------------------------------------------------------


@app.get("/api/admin/items/stats")
async def item_stats() -> dict[str, Any]:
    context = get_context()
    return await asyncio.to_thread(context.search.get_item_stats)


@app.post("/api/admin/jobs/xml", status_code=202)
async def queue_xml(request: XmlIngestionRequest) -> dict[str, Any]:
    context = get_context()
    job_id = await asyncio.to_thread(
        context.jobs.queue_xml_ingestion, request.source_ref, request.force_reprocess
    )
    return {"job_id": job_id, "status": "queued"}


@app.post("/api/admin/jobs/embeddings", status_code=202)
async def queue_embeddings(request: EmbeddingGenerationRequest) -> dict[str, Any]:
    context = get_context()
    job_id = await asyncio.to_thread(
        context.jobs.queue_embedding_generation,
        request.item_ids,
        request.batch_size,
        request.force_embeddings,
    )
    return {"job_id": job_id, "status": "queued"}


@app.post("/api/admin/jobs/pipeline", status_code=202)
async def queue_pipeline(request: PipelineRequest) -> dict[str, Any]:
    context = get_context()
    job_id = await asyncio.to_thread(
        lambda: context.jobs.queue_full_pipeline(
            request.source_ref,
            request.force_reprocess,
            force_embeddings=request.force_embeddings,
            batch_size=request.batch_size,
        )
    )
    return {"job_id": job_id, "status": "queued"}


@app.post("/api/admin/jobs/clean")
async def clean_jobs() -> dict[str, Any]:
    context = get_context()
    removed = await asyncio.to_thread(context.jobs.clean_jobs)
    return {"removed": removed}


@app.get("/api/admin/jobs/{job_id}")
async def job_status(job_id: str) -> dict[str, Any]:
    context = get_context()
    return await asyncio.to_thread(context.jobs.get_job_status, job_id)


@app.delete("/api/admin/jobs/{job_id}")
async def cancel_job(job_id: str) -> dict[str, Any]:
    context = get_context()
    return await asyncio.to_thread(context.jobs.cancel_job, job_id)


@app.get("/api/admin/queue/stats")
async def queue_stats() -> dict[str, Any]:
    context = get_context()
    return await asyncio.to_thread(context.jobs.get_queue_stats)


@app.get("/api/admin/logs")
async def ingestion_logs(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> dict[str, Any]:
    context = get_context()
    return await asyncio.to_thread(context.jobs.get_ingestion_logs, limit, offset)


def run_server(host: str = "127.0.0.1", port: int = 8000):
    """Run the FastAPI server."""
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
