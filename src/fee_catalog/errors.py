"""
Typed exception hierarchy for the fee catalog.

FeeCatalogError (base)
├── CatalogValidationError      malformed query, fee range, pagination
├── DependencyUnavailableError  a collaborator cannot be reached
│   └── EmbeddingUnavailableError
├── NotFoundError
│   ├── ItemNotFoundError
│   └── JobNotFoundError
├── IngestionError
│   ├── RecordValidationError   one bad source record (counted, skipped)
│   ├── SourceFormatError       unreadable or structurally invalid source
│   └── JobCancelledError       cancellation observed between batches
└── InternalError               opaque wrapper for unexpected failures
"""

from __future__ import annotations

import functools
from typing import Any, Callable, TypeVar

from loguru import logger
from pydantic import ValidationError

F = TypeVar("F", bound=Callable[..., Any])


class FeeCatalogError(Exception):
    """Base exception for the fee catalog."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}


class CatalogValidationError(FeeCatalogError):
    """Request rejected before any ranking or job work started."""


class DependencyUnavailableError(FeeCatalogError):
    """An external collaborator is missing or failing."""


class EmbeddingUnavailableError(DependencyUnavailableError):
    """The embedding provider is not configured or returned an error."""


class NotFoundError(FeeCatalogError):
    """Requested entity does not exist."""


class ItemNotFoundError(NotFoundError):
    def __init__(self, item_number: int) -> None:
        super().__init__(
            f"Catalog item {item_number} not found",
            {"item_number": item_number},
        )


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found", {"job_id": job_id})


class IngestionError(FeeCatalogError):
    """Ingestion-time failure."""


class RecordValidationError(IngestionError):
    """A single source record is invalid; the run continues without it."""


class SourceFormatError(IngestionError):
    """The schedule source cannot be read at all; the run aborts."""


class JobCancelledError(IngestionError):
    """A running job was asked to stop; raised between batches."""

    def __init__(self, job_id: str | None = None) -> None:
        super().__init__("cancelled", {"job_id": job_id})


class InternalError(FeeCatalogError):
    """Unexpected failure surfaced without internal details."""

    def __init__(self, operation: str) -> None:
        super().__init__("Internal error", {"operation": operation})


def validation_message(exc: ValidationError) -> str:
    """Flatten a pydantic validation error into one readable line."""
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "__root__")
        message = str(error.get("msg", "invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


def boundary(operation: str) -> Callable[[F], F]:
    """Re-tag collaborator exceptions raised by a public operation.

    Taxonomy errors pass through untouched, pydantic validation errors become
    ``CatalogValidationError`` and anything else is logged with its traceback
    and replaced by an opaque ``InternalError``.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except FeeCatalogError:
                raise
            except ValidationError as exc:
                raise CatalogValidationError(validation_message(exc)) from exc
            except Exception as exc:
                logger.exception("{} failed", operation)
                raise InternalError(operation) from exc

        return wrapper  # type: ignore[return-value]

    return decorator
