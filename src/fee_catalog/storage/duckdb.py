"""
DuckDB storage backend for catalog persistence.
"""

from __future__ import annotations

import json
import math
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator

import duckdb

from .base import CatalogItem, IngestionJob, IngestionLog, utcnow

_ITEM_COLUMNS: tuple[str, ...] = (
    "item_number",
    "description",
    "short_description",
    "category",
    "sub_category",
    "group_name",
    "provider_type",
    "service_type",
    "schedule_fee",
    "benefit_75",
    "benefit_85",
    "benefit_100",
    "has_anaesthetic",
    "derived_fee_description",
    "is_active",
    "item_start_date",
    "item_end_date",
    "source_checksum",
    "last_updated",
    "created_at",
)
# Columns written by upserts; timestamps are managed by the store.
_WRITABLE_COLUMNS: tuple[str, ...] = _ITEM_COLUMNS[1:-2]

_JOB_COLUMNS = (
    "id, kind, status, payload_json, enqueued_at, started_at, finished_at, "
    "result_json, error, cancel_requested, progress_json"
)
_LOG_COLUMNS = (
    "id, job_id, kind, status, source_ref, source_checksum, started_at, finished_at, "
    "items_parsed, items_created, items_updated, items_skipped, items_failed, "
    "items_embedded, errors_json, processing_time_ms"
)
_LOG_COUNT_FIELDS: tuple[str, ...] = (
    "items_parsed",
    "items_created",
    "items_updated",
    "items_skipped",
    "items_failed",
    "items_embedded",
)
_GROUPABLE_FIELDS: frozenset[str] = frozenset({"category", "provider_type"})
_LOCK_STRIPES = 64


def _item_select(alias: str = "i") -> str:
    return ", ".join(f"{alias}.{column}" for column in _ITEM_COLUMNS)


def _filter_clauses(filters: dict[str, Any] | None, alias: str = "i") -> tuple[list[str], list[Any]]:
    """Translate catalog filters into SQL conditions joined with AND."""
    flt = filters or {}
    clauses: list[str] = []
    params: list[Any] = []

    if not flt.get("include_inactive"):
        clauses.append(f"{alias}.is_active = TRUE")
    provider_type = flt.get("provider_type")
    if provider_type and provider_type != "ALL":
        clauses.append(f"{alias}.provider_type = ?")
        params.append(str(provider_type))
    category = flt.get("category")
    if category:
        clauses.append(f"{alias}.category = ?")
        params.append(str(category))
    if flt.get("min_fee") is not None:
        clauses.append(f"{alias}.schedule_fee >= ?")
        params.append(float(flt["min_fee"]))
    if flt.get("max_fee") is not None:
        clauses.append(f"{alias}.schedule_fee <= ?")
        params.append(float(flt["max_fee"]))
    return clauses, params


class DuckDBStorage:
    """DuckDB-backed persistence for catalog items, jobs and ingestion logs.

    Every operation runs on its own cursor so the store can be shared by the
    search path and the ingestion worker pool. Writes are serialized by a
    store-wide lock; ``lock_items`` adds item-level exclusion for pipeline
    read-decide-write sections.
    """

    def __init__(
        self,
        db_path: str,
        *,
        read_only: bool = False,
        initialize: bool = True,
    ) -> None:
        if db_path == ":memory:":
            self.db_path = db_path
        else:
            self.db_path = str(Path(db_path).expanduser().resolve())
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.read_only = read_only
        self._conn = duckdb.connect(self.db_path, read_only=read_only)
        self._write_lock = threading.RLock()
        self._item_locks = [threading.Lock() for _ in range(_LOCK_STRIPES)]
        if initialize and not read_only:
            self.initialize()

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        self._conn.close()

    @contextmanager
    def _cursor(self) -> Iterator[duckdb.DuckDBPyConnection]:
        cursor = self._conn.cursor()
        try:
            yield cursor
        finally:
            cursor.close()

    @contextmanager
    def _writer(self) -> Iterator[duckdb.DuckDBPyConnection]:
        with self._write_lock, self._cursor() as cursor:
            cursor.begin()
            try:
                yield cursor
            except BaseException:
                cursor.rollback()
                raise
            cursor.commit()

    @contextmanager
    def lock_items(self, item_numbers: Iterable[int]) -> Iterator[None]:
        # Stripes are always taken in ascending order so overlapping batches
        # cannot deadlock.
        stripes = sorted({int(number) % _LOCK_STRIPES for number in item_numbers})
        acquired: list[threading.Lock] = []
        try:
            for stripe in stripes:
                lock = self._item_locks[stripe]
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def initialize(self) -> None:
        with self._write_lock, self._cursor() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS items (
                    item_number INTEGER PRIMARY KEY,
                    description VARCHAR NOT NULL,
                    short_description VARCHAR,
                    category VARCHAR,
                    sub_category VARCHAR,
                    group_name VARCHAR,
                    provider_type VARCHAR,
                    service_type VARCHAR,
                    schedule_fee DOUBLE,
                    benefit_75 DOUBLE,
                    benefit_85 DOUBLE,
                    benefit_100 DOUBLE,
                    has_anaesthetic BOOLEAN NOT NULL DEFAULT FALSE,
                    derived_fee_description VARCHAR,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    item_start_date DATE,
                    item_end_date DATE,
                    source_checksum VARCHAR,
                    last_updated TIMESTAMP NOT NULL,
                    created_at TIMESTAMP NOT NULL
                );
                """
            )
            # Vectors live in their own table: replacing one is a delete plus
            # insert, which must not touch the items primary key index.
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS item_embeddings (
                    item_number INTEGER NOT NULL,
                    embedding FLOAT[] NOT NULL,
                    embedded_at TIMESTAMP NOT NULL
                );
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id VARCHAR PRIMARY KEY,
                    kind VARCHAR NOT NULL,
                    status VARCHAR NOT NULL,
                    payload_json VARCHAR NOT NULL DEFAULT '{}',
                    enqueued_at TIMESTAMP NOT NULL,
                    started_at TIMESTAMP,
                    finished_at TIMESTAMP,
                    result_json VARCHAR,
                    error VARCHAR,
                    cancel_requested BOOLEAN NOT NULL DEFAULT FALSE,
                    progress_json VARCHAR
                );
                """
            )
            cursor.execute("CREATE SEQUENCE IF NOT EXISTS ingestion_log_seq START 1;")
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ingestion_logs (
                    id INTEGER PRIMARY KEY DEFAULT nextval('ingestion_log_seq'),
                    job_id VARCHAR,
                    kind VARCHAR NOT NULL,
                    status VARCHAR NOT NULL,
                    source_ref VARCHAR,
                    source_checksum VARCHAR,
                    started_at TIMESTAMP NOT NULL,
                    finished_at TIMESTAMP,
                    items_parsed INTEGER NOT NULL DEFAULT 0,
                    items_created INTEGER NOT NULL DEFAULT 0,
                    items_updated INTEGER NOT NULL DEFAULT 0,
                    items_skipped INTEGER NOT NULL DEFAULT 0,
                    items_failed INTEGER NOT NULL DEFAULT 0,
                    items_embedded INTEGER NOT NULL DEFAULT 0,
                    errors_json VARCHAR NOT NULL DEFAULT '[]',
                    processing_time_ms INTEGER
                );
                """
            )

    # -- catalog items -----------------------------------------------------

    def get_item(self, item_number: int) -> CatalogItem | None:
        items = self.get_items([item_number])
        return items[0] if items else None

    def get_items(self, item_numbers: list[int]) -> list[CatalogItem]:
        if not item_numbers:
            return []
        placeholders = ", ".join(["?"] * len(item_numbers))
        with self._cursor() as cursor:
            rows = cursor.execute(
                f"""
                SELECT {_item_select()}, e.embedding
                FROM items i
                LEFT JOIN item_embeddings e ON e.item_number = i.item_number
                WHERE i.item_number IN ({placeholders})
                ORDER BY i.item_number ASC
                """,
                [int(number) for number in item_numbers],
            ).fetchall()
        return [self._row_to_item(row[:-1], embedding=row[-1]) for row in rows]

    def get_item_checksums(self, item_numbers: list[int]) -> dict[int, str | None]:
        if not item_numbers:
            return {}
        placeholders = ", ".join(["?"] * len(item_numbers))
        with self._cursor() as cursor:
            rows = cursor.execute(
                f"SELECT item_number, source_checksum FROM items WHERE item_number IN ({placeholders})",
                [int(number) for number in item_numbers],
            ).fetchall()
        return {int(row[0]): (str(row[1]) if row[1] is not None else None) for row in rows}

    def upsert_items(self, items: list[CatalogItem]) -> tuple[int, int]:
        if not items:
            return 0, 0
        now = utcnow()
        numbers = [item.item_number for item in items]
        placeholders = ", ".join(["?"] * len(numbers))

        with self._writer() as cursor:
            existing = {
                int(row[0]): row[1]
                for row in cursor.execute(
                    f"SELECT item_number, source_checksum FROM items WHERE item_number IN ({placeholders})",
                    numbers,
                ).fetchall()
            }

            inserts = [item for item in items if item.item_number not in existing]
            updates = [item for item in items if item.item_number in existing]

            if inserts:
                columns = ", ".join(_ITEM_COLUMNS)
                values = ", ".join(["?"] * len(_ITEM_COLUMNS))
                cursor.executemany(
                    f"INSERT INTO items ({columns}) VALUES ({values})",
                    [
                        [item.item_number, *self._writable_values(item), now, now]
                        for item in inserts
                    ],
                )

            if updates:
                assignments = ", ".join(f"{column} = ?" for column in _WRITABLE_COLUMNS)
                cursor.executemany(
                    f"UPDATE items SET {assignments}, last_updated = ? WHERE item_number = ?",
                    [[*self._writable_values(item), now, item.item_number] for item in updates],
                )
                # Content changed: the stored vector no longer describes the item.
                stale = [
                    item.item_number
                    for item in updates
                    if existing[item.item_number] != item.source_checksum
                ]
                if stale:
                    stale_placeholders = ", ".join(["?"] * len(stale))
                    cursor.execute(
                        f"DELETE FROM item_embeddings WHERE item_number IN ({stale_placeholders})",
                        stale,
                    )

        return len(inserts), len(updates)

    def list_items(
        self,
        *,
        filters: dict[str, Any] | None = None,
    ) -> list[CatalogItem]:
        clauses, params = _filter_clauses(filters)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._cursor() as cursor:
            rows = cursor.execute(
                f"SELECT {_item_select()} FROM items i {where} ORDER BY i.item_number ASC",
                params,
            ).fetchall()
        return [self._row_to_item(row) for row in rows]

    def search_items_semantic(
        self,
        *,
        query_embedding: list[float],
        filters: dict[str, Any] | None = None,
        limit: int = 50,
    ) -> list[tuple[CatalogItem, float]]:
        if not query_embedding:
            return []
        clauses, filter_params = _filter_clauses(filters)
        clauses.insert(0, "len(e.embedding) = ?")
        sql = f"""
            SELECT * FROM (
                SELECT {_item_select()},
                       list_cosine_similarity(e.embedding, ?::FLOAT[]) AS similarity
                FROM items i
                JOIN item_embeddings e ON e.item_number = i.item_number
                WHERE {' AND '.join(clauses)}
            ) ranked
            WHERE similarity IS NOT NULL AND NOT isnan(similarity)
            ORDER BY similarity DESC, item_number ASC
            LIMIT ?
        """
        params: list[Any] = [
            [float(value) for value in query_embedding],
            len(query_embedding),
            *filter_params,
            max(int(limit), 1),
        ]
        with self._cursor() as cursor:
            rows = cursor.execute(sql, params).fetchall()

        results: list[tuple[CatalogItem, float]] = []
        for row in rows:
            similarity = float(row[-1])
            if not math.isfinite(similarity):
                continue
            results.append((self._row_to_item(row[:-1]), similarity))
        return results

    def list_item_numbers_for_embedding(
        self,
        *,
        item_numbers: list[int] | None = None,
        include_embedded: bool = False,
    ) -> list[int]:
        sql = """
            SELECT i.item_number
            FROM items i
            LEFT JOIN item_embeddings e ON e.item_number = i.item_number
        """
        clauses: list[str] = []
        params: list[Any] = []
        if item_numbers is not None:
            if not item_numbers:
                return []
            placeholders = ", ".join(["?"] * len(item_numbers))
            clauses.append(f"i.item_number IN ({placeholders})")
            params.extend(int(number) for number in item_numbers)
        if not include_embedded:
            clauses.append("e.item_number IS NULL")
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY i.item_number ASC"
        with self._cursor() as cursor:
            rows = cursor.execute(sql, params).fetchall()
        return [int(row[0]) for row in rows]

    def store_embeddings(self, embeddings: list[tuple[int, list[float]]]) -> int:
        if not embeddings:
            return 0
        numbers = [int(number) for number, _ in embeddings]
        placeholders = ", ".join(["?"] * len(numbers))
        now = utcnow()
        with self._writer() as cursor:
            known = {
                int(row[0])
                for row in cursor.execute(
                    f"SELECT item_number FROM items WHERE item_number IN ({placeholders})",
                    numbers,
                ).fetchall()
            }
            rows = [
                (int(number), [float(value) for value in vector], now)
                for number, vector in embeddings
                if int(number) in known and vector
            ]
            if not rows:
                return 0
            row_placeholders = ", ".join(["?"] * len(rows))
            cursor.execute(
                f"DELETE FROM item_embeddings WHERE item_number IN ({row_placeholders})",
                [row[0] for row in rows],
            )
            cursor.executemany(
                "INSERT INTO item_embeddings (item_number, embedding, embedded_at) VALUES (?, ?, ?)",
                rows,
            )
        return len(rows)

    def item_stats(self) -> dict[str, int]:
        with self._cursor() as cursor:
            row = cursor.execute(
                """
                SELECT
                    COUNT(*),
                    COUNT(*) FILTER (WHERE i.is_active),
                    COUNT(e.item_number)
                FROM items i
                LEFT JOIN item_embeddings e ON e.item_number = i.item_number
                """
            ).fetchone()
        total, active, embedded = row if row else (0, 0, 0)
        return {
            "total_items": int(total or 0),
            "active_items": int(active or 0),
            "items_with_embeddings": int(embedded or 0),
        }

    def group_counts(
        self,
        field_name: str,
        *,
        active_only: bool = True,
        limit: int | None = None,
        order_by_count: bool = False,
    ) -> list[tuple[str, int]]:
        if field_name not in _GROUPABLE_FIELDS:
            raise ValueError(f"Cannot group items by {field_name!r}")
        sql = f"SELECT {field_name}, COUNT(*) AS n FROM items WHERE {field_name} IS NOT NULL"
        if active_only:
            sql += " AND is_active = TRUE"
        sql += f" GROUP BY {field_name}"
        sql += f" ORDER BY n DESC, {field_name} ASC" if order_by_count else f" ORDER BY {field_name} ASC"
        params: list[Any] = []
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._cursor() as cursor:
            rows = cursor.execute(sql, params).fetchall()
        return [(str(row[0]), int(row[1])) for row in rows]

    # -- jobs ----------------------------------------------------------------

    def insert_job(self, job: IngestionJob) -> None:
        with self._writer() as cursor:
            cursor.execute(
                f"INSERT INTO jobs ({_JOB_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    job.id,
                    job.kind,
                    job.status,
                    json.dumps(job.payload, sort_keys=True),
                    job.enqueued_at,
                    job.started_at,
                    job.finished_at,
                    json.dumps(job.result) if job.result is not None else None,
                    job.error,
                    job.cancel_requested,
                    json.dumps(job.progress, sort_keys=True) if job.progress is not None else None,
                ],
            )

    def get_job(self, job_id: str) -> IngestionJob | None:
        with self._cursor() as cursor:
            row = cursor.execute(
                f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = ? LIMIT 1",
                [job_id],
            ).fetchone()
        return self._row_to_job(row) if row is not None else None

    def list_jobs(self, *, status: str | None = None) -> list[IngestionJob]:
        sql = f"SELECT {_JOB_COLUMNS} FROM jobs"
        params: list[Any] = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(status)
        sql += " ORDER BY enqueued_at ASC, id ASC"
        with self._cursor() as cursor:
            rows = cursor.execute(sql, params).fetchall()
        return [self._row_to_job(row) for row in rows]

    def claim_job(self, job_id: str, *, started_at: datetime) -> IngestionJob | None:
        with self._writer() as cursor:
            row = cursor.execute("SELECT status FROM jobs WHERE id = ?", [job_id]).fetchone()
            if row is None or str(row[0]) != "queued":
                return None
            cursor.execute(
                "UPDATE jobs SET status = 'running', started_at = ? WHERE id = ?",
                [started_at, job_id],
            )
            claimed = cursor.execute(
                f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = ?",
                [job_id],
            ).fetchone()
        return self._row_to_job(claimed) if claimed is not None else None

    def finish_job(
        self,
        job_id: str,
        *,
        status: str,
        finished_at: datetime,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> bool:
        if status not in {"completed", "failed"}:
            raise ValueError(f"Not a terminal job status: {status!r}")
        with self._writer() as cursor:
            row = cursor.execute("SELECT status FROM jobs WHERE id = ?", [job_id]).fetchone()
            if row is None or str(row[0]) != "running":
                return False
            cursor.execute(
                """
                UPDATE jobs
                SET status = ?, finished_at = ?, result_json = ?, error = ?
                WHERE id = ?
                """,
                [
                    status,
                    finished_at,
                    json.dumps(result, sort_keys=True) if result is not None else None,
                    error,
                    job_id,
                ],
            )
        return True

    def update_job_progress(self, job_id: str, progress: dict[str, Any]) -> bool:
        with self._writer() as cursor:
            row = cursor.execute("SELECT status FROM jobs WHERE id = ?", [job_id]).fetchone()
            if row is None or str(row[0]) != "running":
                return False
            cursor.execute(
                "UPDATE jobs SET progress_json = ? WHERE id = ?",
                [json.dumps(progress, sort_keys=True), job_id],
            )
        return True

    def request_job_cancel(self, job_id: str) -> bool:
        with self._writer() as cursor:
            row = cursor.execute("SELECT status FROM jobs WHERE id = ?", [job_id]).fetchone()
            if row is None or str(row[0]) != "running":
                return False
            cursor.execute("UPDATE jobs SET cancel_requested = TRUE WHERE id = ?", [job_id])
        return True

    def delete_queued_job(self, job_id: str) -> bool:
        with self._writer() as cursor:
            row = cursor.execute("SELECT status FROM jobs WHERE id = ?", [job_id]).fetchone()
            if row is None or str(row[0]) != "queued":
                return False
            cursor.execute("DELETE FROM jobs WHERE id = ?", [job_id])
        return True

    def fail_running_jobs(self, *, error: str, finished_at: datetime) -> int:
        with self._writer() as cursor:
            row = cursor.execute("SELECT COUNT(*) FROM jobs WHERE status = 'running'").fetchone()
            count = int(row[0]) if row else 0
            if count:
                cursor.execute(
                    """
                    UPDATE jobs
                    SET status = 'failed', finished_at = ?, error = ?
                    WHERE status = 'running'
                    """,
                    [finished_at, error],
                )
        return count

    def count_jobs_by_status(self) -> dict[str, int]:
        with self._cursor() as cursor:
            rows = cursor.execute(
                "SELECT status, COUNT(*) FROM jobs GROUP BY status"
            ).fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    def delete_finished_jobs(self, *, status: str, finished_before: datetime) -> int:
        if status not in {"completed", "failed"}:
            raise ValueError(f"Only terminal jobs can be deleted, got {status!r}")
        with self._writer() as cursor:
            row = cursor.execute(
                """
                SELECT COUNT(*) FROM jobs
                WHERE status = ? AND finished_at IS NOT NULL AND finished_at < ?
                """,
                [status, finished_before],
            ).fetchone()
            count = int(row[0]) if row else 0
            if count:
                cursor.execute(
                    """
                    DELETE FROM jobs
                    WHERE status = ? AND finished_at IS NOT NULL AND finished_at < ?
                    """,
                    [status, finished_before],
                )
        return count

    # -- ingestion logs --------------------------------------------------------

    def create_log(
        self,
        *,
        kind: str,
        started_at: datetime,
        job_id: str | None = None,
        source_ref: str | None = None,
    ) -> int:
        with self._writer() as cursor:
            row = cursor.execute(
                """
                INSERT INTO ingestion_logs (job_id, kind, status, source_ref, started_at)
                VALUES (?, ?, 'processing', ?, ?)
                RETURNING id
                """,
                [job_id, kind, source_ref, started_at],
            ).fetchone()
        if row is None:
            raise RuntimeError("Failed to create ingestion log")
        return int(row[0])

    def finalize_log(
        self,
        log_id: int,
        *,
        status: str,
        finished_at: datetime,
        counts: dict[str, int],
        errors: list[str],
        processing_time_ms: int,
        source_checksum: str | None = None,
    ) -> bool:
        assignments = ", ".join(f"{name} = ?" for name in _LOG_COUNT_FIELDS)
        with self._writer() as cursor:
            row = cursor.execute(
                "SELECT finished_at FROM ingestion_logs WHERE id = ?",
                [log_id],
            ).fetchone()
            if row is None or row[0] is not None:
                return False
            cursor.execute(
                f"""
                UPDATE ingestion_logs
                SET status = ?, finished_at = ?, {assignments},
                    errors_json = ?, processing_time_ms = ?,
                    source_checksum = coalesce(?, source_checksum)
                WHERE id = ?
                """,
                [
                    status,
                    finished_at,
                    *[int(counts.get(name, 0)) for name in _LOG_COUNT_FIELDS],
                    json.dumps(list(errors)),
                    int(processing_time_ms),
                    source_checksum,
                    log_id,
                ],
            )
        return True

    def get_log(self, log_id: int) -> IngestionLog | None:
        with self._cursor() as cursor:
            row = cursor.execute(
                f"SELECT {_LOG_COLUMNS} FROM ingestion_logs WHERE id = ?",
                [log_id],
            ).fetchone()
        return self._row_to_log(row) if row is not None else None

    def list_logs(self, *, limit: int = 20, offset: int = 0) -> tuple[list[IngestionLog], int]:
        with self._cursor() as cursor:
            total_row = cursor.execute("SELECT COUNT(*) FROM ingestion_logs").fetchone()
            rows = cursor.execute(
                f"""
                SELECT {_LOG_COLUMNS}
                FROM ingestion_logs
                ORDER BY started_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                [int(limit), int(offset)],
            ).fetchall()
        total = int(total_row[0]) if total_row else 0
        return [self._row_to_log(row) for row in rows], total

    def last_completed_log_at(self) -> datetime | None:
        with self._cursor() as cursor:
            row = cursor.execute(
                "SELECT max(finished_at) FROM ingestion_logs WHERE status = 'completed'"
            ).fetchone()
        return row[0] if row and row[0] is not None else None

    # -- row mapping -----------------------------------------------------------

    @staticmethod
    def _writable_values(item: CatalogItem) -> list[Any]:
        return [getattr(item, column) for column in _WRITABLE_COLUMNS]

    @staticmethod
    def _row_to_item(row: tuple[Any, ...], *, embedding: Any = None) -> CatalogItem:
        data = dict(zip(_ITEM_COLUMNS, row))
        return CatalogItem(
            item_number=int(data["item_number"]),
            description=str(data["description"]),
            short_description=data["short_description"],
            category=data["category"],
            sub_category=data["sub_category"],
            group_name=data["group_name"],
            provider_type=data["provider_type"],
            service_type=data["service_type"],
            schedule_fee=_optional_float(data["schedule_fee"]),
            benefit_75=_optional_float(data["benefit_75"]),
            benefit_85=_optional_float(data["benefit_85"]),
            benefit_100=_optional_float(data["benefit_100"]),
            has_anaesthetic=bool(data["has_anaesthetic"]),
            derived_fee_description=data["derived_fee_description"],
            is_active=bool(data["is_active"]),
            item_start_date=data["item_start_date"],
            item_end_date=data["item_end_date"],
            source_checksum=data["source_checksum"],
            embedding=[float(value) for value in embedding] if embedding is not None else None,
            last_updated=data["last_updated"],
            created_at=data["created_at"],
        )

    @staticmethod
    def _row_to_job(row: tuple[Any, ...]) -> IngestionJob:
        return IngestionJob(
            id=str(row[0]),
            kind=str(row[1]),
            status=str(row[2]),
            payload=json.loads(str(row[3])) if row[3] else {},
            enqueued_at=row[4],
            started_at=row[5],
            finished_at=row[6],
            result=json.loads(str(row[7])) if row[7] else None,
            error=str(row[8]) if row[8] is not None else None,
            cancel_requested=bool(row[9]),
            progress=json.loads(str(row[10])) if row[10] else None,
        )

    @staticmethod
    def _row_to_log(row: tuple[Any, ...]) -> IngestionLog:
        return IngestionLog(
            id=int(row[0]),
            job_id=str(row[1]) if row[1] is not None else None,
            kind=str(row[2]),
            status=str(row[3]),
            source_ref=row[4],
            source_checksum=row[5],
            started_at=row[6],
            finished_at=row[7],
            items_parsed=int(row[8]),
            items_created=int(row[9]),
            items_updated=int(row[10]),
            items_skipped=int(row[11]),
            items_failed=int(row[12]),
            items_embedded=int(row[13]),
            errors=list(json.loads(str(row[14]))) if row[14] else [],
            processing_time_ms=int(row[15]) if row[15] is not None else None,
        )


def _optional_float(value: Any) -> float | None:
    return float(value) if value is not None else None
