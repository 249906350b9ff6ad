"""
Vector-based semantic ranking.

Embeds a query and ranks stored item embeddings via cosine similarity,
signalling unavailability instead of raising when the provider or the
vector query fails.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger

from ..embeddings import EmbeddingProvider
from ..storage import CatalogItem, StorageBackend


@dataclass(frozen=True)
class SemanticMatch:
    """Semantic score of one item, renormalized to [0, 1]."""

    item: CatalogItem
    score: float
    similarity: float


def normalize_similarity(similarity: float) -> float:
    """Map cosine similarity from [-1, 1] to [0, 1]."""
    return max(0.0, min(1.0, (similarity + 1.0) / 2.0))


class SemanticRanker:
    """Embed a query and search stored item embeddings."""

    def __init__(
        self,
        storage: StorageBackend,
        embedding_provider: EmbeddingProvider | None,
        *,
        candidates: int = 200,
    ) -> None:
        self.storage = storage
        self.embedding_provider = embedding_provider
        self.candidates = max(int(candidates), 1)

    @property
    def available(self) -> bool:
        return self.embedding_provider is not None

    def rank(
        self,
        query: str,
        *,
        filters: dict[str, Any] | None = None,
    ) -> list[SemanticMatch] | None:
        """Return ranked matches, or None when semantic ranking is unavailable."""
        if self.embedding_provider is None:
            return None
        try:
            query_embedding = self.embedding_provider.embed_query(query)
            rows = self.storage.search_items_semantic(
                query_embedding=query_embedding,
                filters=filters,
                limit=self.candidates,
            )
        except Exception as exc:
            logger.warning("Semantic ranking unavailable: {}", exc)
            return None
        return [
            SemanticMatch(
                item=item,
                score=round(normalize_similarity(similarity), 6),
                similarity=similarity,
            )
            for item, similarity in rows
        ]
