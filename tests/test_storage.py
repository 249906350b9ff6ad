from __future__ import annotations

import threading
from dataclasses import replace
from datetime import timedelta

import pytest

from fee_catalog.storage import DuckDBStorage, IngestionJob, utcnow

from conftest import concept_vector, make_item, sample_items


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


def test_upsert_reports_created_and_updated(storage: DuckDBStorage) -> None:
    assert storage.upsert_items(sample_items()) == (len(sample_items()), 0)

    changed = [replace(item, schedule_fee=99.0) for item in sample_items()[:2]]
    assert storage.upsert_items(changed) == (0, 2)
    assert storage.get_item(changed[0].item_number).schedule_fee == 99.0


def test_get_item_round_trips_fields(catalog: DuckDBStorage) -> None:
    item = catalog.get_item(17610)

    assert item is not None
    assert item.description == "Anaesthesia pre-assessment consultation"
    assert item.provider_type == "S"
    assert item.has_anaesthetic is True
    assert item.schedule_fee == pytest.approx(47.5)
    assert item.created_at is not None
    assert catalog.get_item(424242) is None


def test_changed_checksum_clears_embedding(catalog: DuckDBStorage) -> None:
    catalog.store_embeddings([(23, [1.0, 0.0]), (36, [0.0, 1.0])])
    item_23 = catalog.get_item(23)
    item_36 = catalog.get_item(36)

    catalog.upsert_items(
        [
            replace(item_23, description="Changed", source_checksum="new-checksum"),
            replace(item_36, schedule_fee=81.0),
        ]
    )

    assert not catalog.get_item(23).has_embedding
    assert catalog.get_item(36).has_embedding


def test_list_items_applies_filters(catalog: DuckDBStorage) -> None:
    active = {item.item_number for item in catalog.list_items()}
    assert 3 not in active

    everything = catalog.list_items(filters={"include_inactive": True})
    assert 3 in {item.item_number for item in everything}

    specialists = catalog.list_items(filters={"provider_type": "S", "max_fee": 40})
    assert [item.item_number for item in specialists] == [57506]


def test_fee_bounds_exclude_items_without_fee(catalog: DuckDBStorage) -> None:
    numbers = {item.item_number for item in catalog.list_items(filters={"min_fee": 0})}

    assert 88000 not in numbers


def test_store_embeddings_ignores_unknown_items(catalog: DuckDBStorage) -> None:
    written = catalog.store_embeddings([(23, [0.5, 0.5]), (424242, [0.5, 0.5])])

    assert written == 1
    assert catalog.item_stats()["items_with_embeddings"] == 1


def test_embedding_candidates(catalog: DuckDBStorage) -> None:
    catalog.store_embeddings([(23, [1.0, 0.0])])

    pending = catalog.list_item_numbers_for_embedding()
    assert 23 not in pending
    assert 36 in pending
    assert 23 in catalog.list_item_numbers_for_embedding(include_embedded=True)
    assert catalog.list_item_numbers_for_embedding(item_numbers=[23, 424242], include_embedded=True) == [23]


def test_semantic_search_orders_by_similarity(embedded_catalog: DuckDBStorage) -> None:
    rows = embedded_catalog.search_items_semantic(
        query_embedding=concept_vector("tooth"), limit=3
    )

    assert rows[0][0].item_number == 88000
    assert rows[0][1] > rows[1][1]
    assert len(rows) == 3


def test_semantic_search_respects_filters(embedded_catalog: DuckDBStorage) -> None:
    rows = embedded_catalog.search_items_semantic(
        query_embedding=concept_vector("doctor visit"),
        filters={"provider_type": "S"},
        limit=50,
    )

    assert rows
    assert all(item.provider_type == "S" for item, _ in rows)
    assert all(item.is_active for item, _ in rows)


def test_item_stats_and_group_counts(embedded_catalog: DuckDBStorage) -> None:
    stats = embedded_catalog.item_stats()

    assert stats == {
        "total_items": 8,
        "active_items": 7,
        "items_with_embeddings": 8,
    }
    categories = dict(embedded_catalog.group_counts("category"))
    assert categories["1"] == 4
    top = embedded_catalog.group_counts(
        "provider_type", active_only=False, order_by_count=True, limit=1
    )
    assert top == [("G", 4)]
    with pytest.raises(ValueError):
        embedded_catalog.group_counts("description")


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


def _job(job_id: str, **kwargs) -> IngestionJob:
    fields = {
        "kind": "xml-ingest",
        "status": "queued",
        "payload": {"source_ref": "schedule.xml"},
        "enqueued_at": utcnow(),
    }
    fields.update(kwargs)
    return IngestionJob(id=job_id, **fields)


def test_job_transitions_happen_once(storage: DuckDBStorage) -> None:
    storage.insert_job(_job("job-1"))

    claimed = storage.claim_job("job-1", started_at=utcnow())
    assert claimed is not None and claimed.status == "running"
    assert storage.claim_job("job-1", started_at=utcnow()) is None

    assert storage.finish_job("job-1", status="completed", finished_at=utcnow(), result={"ok": 1})
    assert not storage.finish_job("job-1", status="failed", finished_at=utcnow())

    job = storage.get_job("job-1")
    assert job.status == "completed"
    assert job.result == {"ok": 1}
    assert job.payload == {"source_ref": "schedule.xml"}


def test_job_progress_is_written_only_while_running(storage: DuckDBStorage) -> None:
    storage.insert_job(_job("job-1"))
    progress = {"stage": "parse", "done": 1, "total": 4, "items_created": 10}

    assert not storage.update_job_progress("job-1", progress)
    storage.claim_job("job-1", started_at=utcnow())
    assert storage.update_job_progress("job-1", progress)
    storage.finish_job("job-1", status="completed", finished_at=utcnow())
    assert not storage.update_job_progress("job-1", {"stage": "embed", "done": 0, "total": 1})

    job = storage.get_job("job-1")
    assert job.progress == progress
    assert job.to_dict()["progress"] == progress
    assert not storage.update_job_progress("missing", progress)


def test_cancel_and_delete_depend_on_status(storage: DuckDBStorage) -> None:
    storage.insert_job(_job("queued"))
    storage.insert_job(_job("running"))
    storage.claim_job("running", started_at=utcnow())

    assert not storage.request_job_cancel("queued")
    assert storage.request_job_cancel("running")
    assert storage.get_job("running").cancel_requested
    assert not storage.delete_queued_job("running")
    assert storage.delete_queued_job("queued")
    assert storage.get_job("queued") is None


def test_fail_running_jobs_and_counts(storage: DuckDBStorage) -> None:
    storage.insert_job(_job("a"))
    storage.insert_job(_job("b"))
    storage.claim_job("a", started_at=utcnow())

    assert storage.fail_running_jobs(error="interrupted", finished_at=utcnow()) == 1
    assert storage.get_job("a").error == "interrupted"
    assert storage.count_jobs_by_status() == {"failed": 1, "queued": 1}


def test_delete_finished_jobs_before_cutoff(storage: DuckDBStorage) -> None:
    now = utcnow()
    storage.insert_job(_job("old", status="completed", finished_at=now - timedelta(days=2)))
    storage.insert_job(_job("new", status="completed", finished_at=now))

    removed = storage.delete_finished_jobs(status="completed", finished_before=now - timedelta(days=1))

    assert removed == 1
    assert [job.id for job in storage.list_jobs()] == ["new"]
    with pytest.raises(ValueError):
        storage.delete_finished_jobs(status="queued", finished_before=now)


# ---------------------------------------------------------------------------
# Ingestion logs
# ---------------------------------------------------------------------------


def test_logs_finalize_once_and_list_newest_first(storage: DuckDBStorage) -> None:
    started = utcnow()
    first = storage.create_log(kind="xml-ingest", started_at=started - timedelta(minutes=5))
    second = storage.create_log(kind="embedding-generation", started_at=started)

    assert storage.finalize_log(
        first,
        status="completed",
        finished_at=started,
        counts={"items_parsed": 3, "items_created": 3},
        errors=[],
        processing_time_ms=12,
        source_checksum="abc",
    )
    assert not storage.finalize_log(
        first,
        status="failed",
        finished_at=started,
        counts={},
        errors=["late"],
        processing_time_ms=1,
    )

    logs, total = storage.list_logs(limit=10)
    assert total == 2
    assert [log.id for log in logs] == [second, first]
    finalized = storage.get_log(first)
    assert finalized.status == "completed"
    assert finalized.items_created == 3
    assert finalized.source_checksum == "abc"
    assert storage.get_log(second).status == "processing"
    assert storage.last_completed_log_at() == started


def test_in_memory_store() -> None:
    store = DuckDBStorage(":memory:")
    try:
        store.upsert_items([make_item(1, "Consultation")])
        assert store.get_item(1).description == "Consultation"
    finally:
        store.close()


# ---------------------------------------------------------------------------
# Item locks
# ---------------------------------------------------------------------------


def test_overlapping_item_locks_exclude_each_other(storage: DuckDBStorage) -> None:
    holding = threading.Event()
    release = threading.Event()
    events: list[str] = []

    def first() -> None:
        with storage.lock_items([23, 36]):
            events.append("first acquired")
            holding.set()
            release.wait(10)
            events.append("first released")

    def second() -> None:
        with storage.lock_items([36, 104]):
            events.append("second acquired")

    owner = threading.Thread(target=first)
    owner.start()
    assert holding.wait(10)
    waiter = threading.Thread(target=second)
    waiter.start()

    waiter.join(timeout=0.2)
    assert waiter.is_alive()
    assert events == ["first acquired"]

    release.set()
    owner.join(10)
    waiter.join(10)

    assert not waiter.is_alive()
    assert events == ["first acquired", "first released", "second acquired"]


def test_disjoint_item_locks_do_not_block(storage: DuckDBStorage) -> None:
    with storage.lock_items([23, 36]):
        done = threading.Event()

        def other() -> None:
            with storage.lock_items([104]):
                done.set()

        worker = threading.Thread(target=other)
        worker.start()
        assert done.wait(5)
        worker.join(5)
