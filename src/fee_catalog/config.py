"""
Configuration helpers for catalog storage, ranking and ingestion.

Values come from explicit arguments first, then ``FEE_CATALOG_*`` environment
variables, then the defaults below.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_DB_PATH = "~/.fee_catalog/catalog.duckdb"
ENV_DB_PATH = "FEE_CATALOG_DB_PATH"


def resolve_db_path(override_path: str | None = None) -> str:
    """
    Resolve the DuckDB path from CLI override, env var, or default.

    Precedence:
    1) explicit override_path
    2) FEE_CATALOG_DB_PATH
    3) default path
    """
    raw_path = override_path or os.getenv(ENV_DB_PATH) or DEFAULT_DB_PATH
    resolved = Path(raw_path).expanduser().resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return str(resolved)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class SearchSettings:
    """Tunable constants of the hybrid ranking engine."""

    text_weight: float = 0.4
    semantic_weight: float = 0.6
    single_source_penalty: float = 0.8
    high_confidence_threshold: float = 0.9
    # Promotion needs relevance strictly above this. Query words of two
    # characters or fewer do not count toward the relevance denominator.
    item_text_relevance_threshold: float = 0.3
    semantic_timeout_s: float = 2.0
    semantic_candidates: int = 200

    def __post_init__(self) -> None:
        if self.text_weight < 0 or self.semantic_weight < 0:
            raise ValueError("blend weights must be >= 0")
        if self.text_weight + self.semantic_weight <= 0:
            raise ValueError("blend weights must not both be zero")
        if not 0 < self.single_source_penalty <= 1:
            raise ValueError("single_source_penalty must be in (0, 1]")
        if self.semantic_timeout_s <= 0:
            raise ValueError("semantic_timeout_s must be > 0")
        if self.semantic_candidates < 1:
            raise ValueError("semantic_candidates must be >= 1")

    @classmethod
    def from_env(cls) -> "SearchSettings":
        defaults = cls()
        return cls(
            text_weight=_env_float("FEE_CATALOG_TEXT_WEIGHT", defaults.text_weight),
            semantic_weight=_env_float(
                "FEE_CATALOG_SEMANTIC_WEIGHT", defaults.semantic_weight
            ),
            single_source_penalty=_env_float(
                "FEE_CATALOG_SINGLE_SOURCE_PENALTY", defaults.single_source_penalty
            ),
            high_confidence_threshold=_env_float(
                "FEE_CATALOG_HIGH_CONFIDENCE", defaults.high_confidence_threshold
            ),
            item_text_relevance_threshold=defaults.item_text_relevance_threshold,
            semantic_timeout_s=_env_float(
                "FEE_CATALOG_SEMANTIC_TIMEOUT", defaults.semantic_timeout_s
            ),
            semantic_candidates=_env_int(
                "FEE_CATALOG_SEMANTIC_CANDIDATES", defaults.semantic_candidates
            ),
        )


@dataclass(frozen=True)
class PipelineSettings:
    """Retry, batching and retention policy for ingestion jobs."""

    retry_attempts: int = 3
    backoff_base_s: float = 1.0
    backoff_max_s: float = 10.0
    parse_chunk_size: int = 100
    max_workers: int = 2
    completed_retention_s: float = 24 * 60 * 60
    failed_retention_s: float = 7 * 24 * 60 * 60

    def __post_init__(self) -> None:
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be >= 1")
        if self.backoff_base_s < 0 or self.backoff_max_s < 0:
            raise ValueError("backoff delays must be >= 0")
        if self.parse_chunk_size < 1:
            raise ValueError("parse_chunk_size must be >= 1")
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        defaults = cls()
        return cls(
            retry_attempts=_env_int("FEE_CATALOG_RETRY_ATTEMPTS", defaults.retry_attempts),
            backoff_base_s=_env_float("FEE_CATALOG_BACKOFF_BASE", defaults.backoff_base_s),
            backoff_max_s=_env_float("FEE_CATALOG_BACKOFF_MAX", defaults.backoff_max_s),
            parse_chunk_size=defaults.parse_chunk_size,
            max_workers=_env_int("FEE_CATALOG_WORKERS", defaults.max_workers),
            completed_retention_s=defaults.completed_retention_s,
            failed_retention_s=defaults.failed_retention_s,
        )
