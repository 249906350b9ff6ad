"""Shared fixtures: fake GenAI client, sample schedule files and stores."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Callable
from xml.sax.saxutils import escape

import pytest
from loguru import logger

from fee_catalog.embeddings import EmbeddingProvider, item_embedding_text
from fee_catalog.storage import CatalogItem, DuckDBStorage


# ---------------------------------------------------------------------------
# Fake GenAI embedding client
# ---------------------------------------------------------------------------

# Each dimension lights up for one family of terms, so similarity between
# queries and items is predictable.
_CONCEPTS: tuple[tuple[str, ...], ...] = (
    ("attendance", "consult", "visit", "doctor"),
    ("anaesth",),
    ("x-ray", "imaging", "radiograph", "scan"),
    ("dental", "tooth", "teeth"),
)


def concept_vector(text: str) -> list[float]:
    lowered = text.lower()
    vector = [1.0 if any(term in lowered for term in group) else 0.0 for group in _CONCEPTS]
    vector.append(0.1)
    return vector


@dataclass
class _FakeEmbedding:
    values: list[float]


@dataclass
class _FakeEmbedResult:
    embeddings: list[_FakeEmbedding]


class _FakeModels:
    """Records calls and returns concept embeddings."""

    def __init__(
        self,
        *,
        fail_when: Callable[[list[str]], bool] | None = None,
        delay_s: float = 0.0,
    ) -> None:
        self.calls: list[dict[str, Any]] = []
        self.fail_when = fail_when
        self.delay_s = delay_s

    def embed_content(
        self, *, model: str, contents: list[str], config: dict
    ) -> _FakeEmbedResult:
        self.calls.append({"model": model, "contents": list(contents), "config": config})
        if self.delay_s:
            time.sleep(self.delay_s)
        if self.fail_when is not None and self.fail_when(list(contents)):
            raise RuntimeError("embedding service unavailable")
        return _FakeEmbedResult(
            embeddings=[_FakeEmbedding(values=concept_vector(text)) for text in contents]
        )


class FakeClient:
    def __init__(self, **kwargs: Any) -> None:
        self.models = _FakeModels(**kwargs)


@pytest.fixture()
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture()
def embedding_provider(fake_client: FakeClient) -> EmbeddingProvider:
    return EmbeddingProvider(client=fake_client, model="fake-embedding", dim=5, batch_size=50)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path: Path) -> None:
    """Keep real credentials and the user's catalog out of tests."""
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    monkeypatch.setenv("FEE_CATALOG_DB_PATH", str(tmp_path / "env-catalog.duckdb"))


@pytest.fixture(autouse=True)
def _quiet_logs():
    logger.remove()
    yield


# ---------------------------------------------------------------------------
# Sample catalog data
# ---------------------------------------------------------------------------

SAMPLE_RECORDS: list[dict[str, str]] = [
    {
        "ItemNum": "3",
        "Descriptor": "Brief professional attendance by a general practitioner",
        "Category": "1",
        "Group": "A1",
        "ProviderType": "G",
        "ScheduleFee": "19.60",
        "ItemStartDate": "01.11.2019",
        "ItemEndDate": "30.06.2020",
    },
    {
        "ItemNum": "23",
        "Descriptor": "Professional attendance by a general practitioner lasting less than 20 minutes",
        "Category": "1",
        "Group": "A1",
        "ProviderType": "G",
        "ServiceType": "Consultation",
        "ScheduleFee": "41.40",
        "Benefit100": "41.40",
        "ItemStartDate": "01.11.2019",
    },
    {
        "ItemNum": "36",
        "Descriptor": "Professional attendance by a general practitioner lasting at least 20 minutes",
        "Category": "1",
        "Group": "A1",
        "ProviderType": "G",
        "ScheduleFee": "80.10",
        "ItemStartDate": "2019-11-01",
    },
    {
        "ItemNum": "104",
        "Descriptor": "Professional attendance by a specialist, initial consultation",
        "Category": "1",
        "Group": "A3",
        "ProviderType": "S",
        "ScheduleFee": "95.60",
        "Benefit75": "71.70",
        "Benefit85": "81.30",
    },
    {
        "ItemNum": "10990",
        "Descriptor": "Bulk billing incentive for a general practitioner service to a concession card holder",
        "Category": "1",
        "Group": "M1",
        "ProviderType": "G",
        "ScheduleFee": "7.85",
    },
    {
        "ItemNum": "17610",
        "Descriptor": "Anaesthesia pre-assessment consultation",
        "Category": "3",
        "Group": "T10",
        "ProviderType": "S",
        "ScheduleFee": "47.50",
        "HasAnaesthetic": "Y",
    },
    {
        "ItemNum": "57506",
        "Descriptor": "Diagnostic imaging x-ray of the chest",
        "Category": "5",
        "Group": "I3",
        "ProviderType": "S",
        "ScheduleFee": "35.35",
    },
    {
        "ItemNum": "88000",
        "Descriptor": "Dental extraction of a tooth",
        "Category": "8",
        "Group": "D1",
        "ProviderType": "AD",
    },
]


def write_schedule(path: Path, records: list[dict[str, str]]) -> Path:
    """Write records as an MBS-style XML export."""
    lines = ['<?xml version="1.0" encoding="UTF-8"?>', "<MBS_XML>"]
    for record in records:
        lines.append("  <Data>")
        for name, value in record.items():
            lines.append(f"    <{name}>{escape(value)}</{name}>")
        lines.append("  </Data>")
    lines.append("</MBS_XML>")
    path.write_text("\n".join(lines), encoding="utf-8")
    return path


@pytest.fixture()
def schedule_file(tmp_path: Path) -> Path:
    return write_schedule(tmp_path / "schedule.xml", SAMPLE_RECORDS)


def make_item(item_number: int, description: str, **kwargs: Any) -> CatalogItem:
    fields: dict[str, Any] = {
        "short_description": description[:255],
        "source_checksum": f"checksum-{item_number}",
    }
    fields.update(kwargs)
    return CatalogItem(item_number=item_number, description=description, **fields)


def sample_items() -> list[CatalogItem]:
    items: list[CatalogItem] = []
    for record in SAMPLE_RECORDS:
        fee = record.get("ScheduleFee")
        ended = "ItemEndDate" in record
        items.append(
            make_item(
                int(record["ItemNum"]),
                record["Descriptor"],
                category=record.get("Category"),
                group_name=record.get("Group"),
                provider_type=record.get("ProviderType"),
                service_type=record.get("ServiceType"),
                schedule_fee=float(fee) if fee else None,
                has_anaesthetic=record.get("HasAnaesthetic") == "Y",
                is_active=not ended,
                item_end_date=date(2020, 6, 30) if ended else None,
            )
        )
    return items


@pytest.fixture()
def storage(tmp_path: Path):
    store = DuckDBStorage(str(tmp_path / "catalog.duckdb"))
    yield store
    store.close()


@pytest.fixture()
def catalog(storage: DuckDBStorage) -> DuckDBStorage:
    """Store seeded with the sample items, without vectors."""
    storage.upsert_items(sample_items())
    return storage


@pytest.fixture()
def embedded_catalog(catalog: DuckDBStorage) -> DuckDBStorage:
    """Sample catalog with a concept vector stored for every item."""
    items = catalog.list_items(filters={"include_inactive": True})
    catalog.store_embeddings(
        [(item.item_number, concept_vector(item_embedding_text(item))) for item in items]
    )
    return catalog
