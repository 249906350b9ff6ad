"""Tests for the embedding provider."""

from __future__ import annotations

import os

import pytest

from fee_catalog.embeddings import EmbeddingProvider, item_embedding_text
from fee_catalog.errors import EmbeddingUnavailableError

from conftest import FakeClient, _FakeEmbedResult, make_item

# Read before the autouse fixture strips credentials from the environment.
_REAL_API_KEY = os.getenv("GOOGLE_API_KEY")


class _ShortClient:
    """Returns one embedding fewer than requested."""

    class _Models:
        def embed_content(self, *, model: str, contents: list[str], config: dict):
            return _FakeEmbedResult(embeddings=[])

    def __init__(self) -> None:
        self.models = self._Models()


# ---------------------------------------------------------------------------
# Unit tests (mock-based, no API key needed)
# ---------------------------------------------------------------------------


def test_embed_texts_returns_correct_count() -> None:
    client = FakeClient()
    provider = EmbeddingProvider(client=client, dim=5, batch_size=50)

    embeddings = provider.embed_texts(["consultation", "x-ray"])

    assert len(embeddings) == 2
    assert len(embeddings[0]) == 5


def test_embed_texts_uses_document_task_type() -> None:
    client = FakeClient()
    provider = EmbeddingProvider(client=client, dim=5)

    provider.embed_texts(["test"])

    call = client.models.calls[0]
    assert call["config"]["task_type"] == "RETRIEVAL_DOCUMENT"
    assert call["config"]["output_dimensionality"] == 5


def test_embed_query_uses_query_task_type() -> None:
    client = FakeClient()
    provider = EmbeddingProvider(client=client, dim=5)

    result = provider.embed_query("dental")

    assert result == [0.0, 0.0, 0.0, 1.0, 0.1]
    call = client.models.calls[0]
    assert call["config"]["task_type"] == "RETRIEVAL_QUERY"
    assert call["contents"] == ["dental"]


def test_embed_texts_batching() -> None:
    client = FakeClient()
    provider = EmbeddingProvider(client=client, dim=5, batch_size=3)

    texts = [f"text_{i}" for i in range(7)]
    embeddings = provider.embed_texts(texts)

    assert len(embeddings) == 7
    # 7 texts with batch_size=3 → 3 API calls (3+3+1)
    assert [len(call["contents"]) for call in client.models.calls] == [3, 3, 1]


def test_response_size_mismatch_raises() -> None:
    provider = EmbeddingProvider(client=_ShortClient(), dim=5)

    with pytest.raises(EmbeddingUnavailableError, match="size mismatch"):
        provider.embed_texts(["one"])


def test_env_overrides(monkeypatch) -> None:
    client = FakeClient()
    monkeypatch.setenv("FEE_CATALOG_EMBEDDING_MODEL", "custom-model-001")
    monkeypatch.setenv("FEE_CATALOG_EMBEDDING_DIM", "256")
    monkeypatch.setenv("FEE_CATALOG_EMBEDDING_BATCH_SIZE", "10")

    provider = EmbeddingProvider(client=client)

    assert provider.model == "custom-model-001"
    assert provider.dim == 256
    assert provider.batch_size == 10

    provider.embed_texts(["test"])
    call = client.models.calls[0]
    assert call["model"] == "custom-model-001"
    assert call["config"]["output_dimensionality"] == 256


def test_missing_api_key_raises() -> None:
    with pytest.raises(EmbeddingUnavailableError, match="GOOGLE_API_KEY"):
        EmbeddingProvider(api_key=None, client=None)


def test_from_env_without_key_is_none() -> None:
    assert EmbeddingProvider.from_env() is None


def test_item_embedding_text_skips_empty_parts() -> None:
    item = make_item(23, "Professional attendance", category="1", group_name="A1")

    assert item_embedding_text(item) == "MBS Item 23: Professional attendance 1 A1"


# ---------------------------------------------------------------------------
# Real API integration test (skipped unless GOOGLE_API_KEY is set)
# ---------------------------------------------------------------------------


@pytest.mark.skipif(
    not _REAL_API_KEY,
    reason="GOOGLE_API_KEY not set, skipping real embedding test",
)
def test_real_embedding_api() -> None:
    provider = EmbeddingProvider(api_key=_REAL_API_KEY, dim=128)

    texts = ["Professional attendance by a general practitioner.", "Chest x-ray."]
    embeddings = provider.embed_texts(texts)

    assert len(embeddings) == 2
    assert len(embeddings[0]) == 128
    assert all(isinstance(v, float) for v in embeddings[0])

    query_emb = provider.embed_query("doctor visit")
    assert len(query_emb) == 128
