"""Async record store over the SQLite tables of the system of record."""

from __future__ import annotations

import asyncio
import sqlite3
from array import array
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

import orjson

from vector_sync.core.errors import ReferentialViolation, StoreError, StorePermissionError, SyncError
from vector_sync.core.logging import ctx, get_logger
from vector_sync.db.sqlite import SQLiteDatabase
from vector_sync.models.entities import Record, VectorMetadata, VectorRecord
from vector_sync.utils.time import from_ms, to_ms, utc_now

logger = get_logger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], datetime]

FETCH_BACKOFF_BASE_MS = 500
FETCH_BACKOFF_CAP_MS = 15_000
DEFAULT_FETCH_ATTEMPTS = 3

_PERMISSION_MARKERS = ("not authorized", "prohibited", "readonly", "permission denied")

_RECORD_COLUMNS = "id, tenant_id, fields_json, created_at, updated_at"
_VECTOR_COLUMNS = "id, tenant_id, record_id, content, embedding, metadata_json, created_at, updated_at"


def fetch_backoff_ms(attempt: int) -> int:
    """Wait after failed fetch attempt ``attempt`` (1-indexed) before the next one."""
    return min(FETCH_BACKOFF_BASE_MS * 2 ** (attempt - 1), FETCH_BACKOFF_CAP_MS)


def classify_store_error(exc: sqlite3.Error, operation: str) -> SyncError:
    message = str(exc)
    lowered = message.lower()
    if any(marker in lowered for marker in _PERMISSION_MARKERS):
        return StorePermissionError(f"Access denied during {operation}: {message}")
    if isinstance(exc, sqlite3.IntegrityError) and "foreign key" in lowered:
        return ReferentialViolation(f"Store rejected {operation}: {message}")
    return StoreError(f"Store error during {operation}: {message}")


class RecordStore:
    """Read/write access to records, tenants and vector records.

    Blocking SQLite work is pushed to a worker thread so backoff waits and
    other in-flight requests keep running on the event loop.
    """

    def __init__(
        self,
        database: SQLiteDatabase,
        *,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = utc_now,
        default_fetch_attempts: int = DEFAULT_FETCH_ATTEMPTS,
    ) -> None:
        self.db = database
        self.sleep = sleep
        self.clock = clock
        self.default_fetch_attempts = default_fetch_attempts

    async def fetch_changed_since(self, tenant_id: str, since: datetime) -> list[Record]:
        rows = await self._run(
            self.db.query,
            f"SELECT {_RECORD_COLUMNS} FROM records WHERE tenant_id = ? AND updated_at >= ? ORDER BY updated_at, id",
            [tenant_id, to_ms(since)],
            operation="fetch_changed_since",
        )
        return [_row_to_record(row) for row in rows]

    async def fetch_one(self, tenant_id: str, record_id: str, max_attempts: int | None = None) -> Record | None:
        """Fetch a record, retrying with exponential backoff while it is missing.

        Returns ``None`` when every attempt came back empty. Raises
        ``StorePermissionError`` immediately on access errors and ``StoreError``
        when the final attempt fails with an error.
        """
        attempts = max_attempts or self.default_fetch_attempts
        for attempt in range(1, attempts + 1):
            try:
                record = await self._run(self._select_record, tenant_id, record_id, operation="fetch_one")
            except StorePermissionError:
                logger.error(
                    "Permission denied fetching record",
                    extra=ctx(tenant_id=tenant_id, record_id=record_id, attempt=attempt),
                )
                raise
            except StoreError as exc:
                if attempt == attempts:
                    logger.error(
                        "Record fetch failed after all attempts",
                        extra=ctx(tenant_id=tenant_id, record_id=record_id, attempt=attempt, error=str(exc)),
                    )
                    raise StoreError(
                        f"Failed to fetch record after {attempts} attempts: {exc.message}",
                        tenant_id=tenant_id,
                        record_id=record_id,
                    ) from exc
                logger.warning(
                    "Record fetch failed, retrying after backoff",
                    extra=ctx(
                        tenant_id=tenant_id,
                        record_id=record_id,
                        attempt=attempt,
                        next_attempt_in_ms=fetch_backoff_ms(attempt),
                        error=str(exc),
                    ),
                )
                await self.sleep(fetch_backoff_ms(attempt) / 1000)
                continue

            if record is not None:
                logger.info(
                    "Record fetched",
                    extra=ctx(tenant_id=tenant_id, record_id=record_id, attempt=attempt),
                )
                return record
            if attempt == attempts:
                logger.warning(
                    "Record not found after all attempts",
                    extra=ctx(tenant_id=tenant_id, record_id=record_id, attempts=attempts),
                )
                return None
            logger.warning(
                "Record not found, retrying after backoff",
                extra=ctx(
                    tenant_id=tenant_id,
                    record_id=record_id,
                    attempt=attempt,
                    next_attempt_in_ms=fetch_backoff_ms(attempt),
                ),
            )
            await self.sleep(fetch_backoff_ms(attempt) / 1000)
        return None

    async def exists(self, record_id: str, tenant_id: str | None = None) -> bool:
        """Cheap existence check, no retry."""
        if tenant_id is None:
            row = await self._run(
                self.db.query_one, "SELECT 1 FROM records WHERE id = ? LIMIT 1", [record_id], operation="exists"
            )
        else:
            row = await self._run(
                self.db.query_one,
                "SELECT 1 FROM records WHERE id = ? AND tenant_id = ? LIMIT 1",
                [record_id, tenant_id],
                operation="exists",
            )
        return row is not None

    async def tenant_exists(self, tenant_id: str) -> bool:
        row = await self._run(
            self.db.query_one, "SELECT 1 FROM tenants WHERE id = ? LIMIT 1", [tenant_id], operation="tenant_exists"
        )
        return row is not None

    async def list_active_tenants(self) -> list[str]:
        rows = await self._run(
            self.db.query, "SELECT id FROM tenants WHERE active = 1 ORDER BY id", [], operation="list_active_tenants"
        )
        return [row["id"] for row in rows]

    async def upsert_vector(self, vector: VectorRecord) -> VectorRecord:
        """Create or replace the vector for ``vector.record_id``.

        Both the tenant and the record (within that tenant) are checked first;
        a missing one raises ``ReferentialViolation`` and nothing is written.
        """
        if not await self.tenant_exists(vector.tenant_id):
            raise ReferentialViolation(
                f"Tenant {vector.tenant_id} does not exist",
                tenant_id=vector.tenant_id,
                record_id=vector.record_id,
            )
        if not await self.exists(vector.record_id, tenant_id=vector.tenant_id):
            raise ReferentialViolation(
                f"Record {vector.record_id} does not exist for tenant {vector.tenant_id}",
                tenant_id=vector.tenant_id,
                record_id=vector.record_id,
            )
        now = to_ms(self.clock())
        await self._run(self._write_vector, vector, now, operation="upsert_vector")
        stored = await self.get_vector(vector.record_id)
        if stored is None:
            raise StoreError(
                "Vector missing right after upsert",
                tenant_id=vector.tenant_id,
                record_id=vector.record_id,
            )
        logger.debug(
            "Vector upserted",
            extra=ctx(tenant_id=vector.tenant_id, record_id=vector.record_id, dimensions=len(vector.embedding)),
        )
        return stored

    async def remove_orphaned_vectors(self, tenant_id: str) -> int:
        """Delete the tenant's vectors whose record no longer exists, in one statement."""
        removed = await self._run(self._delete_orphans, tenant_id, operation="remove_orphaned_vectors")
        if removed:
            logger.info("Removed orphaned vectors", extra=ctx(tenant_id=tenant_id, removed=removed))
        return removed

    async def get_vector(self, record_id: str) -> VectorRecord | None:
        row = await self._run(
            self.db.query_one,
            f"SELECT {_VECTOR_COLUMNS} FROM record_vectors WHERE record_id = ?",
            [record_id],
            operation="get_vector",
        )
        return _row_to_vector(row) if row is not None else None

    async def count_vectors(self, tenant_id: str) -> int:
        row = await self._run(
            self.db.query_one,
            "SELECT COUNT(*) AS count FROM record_vectors WHERE tenant_id = ?",
            [tenant_id],
            operation="count_vectors",
        )
        return int(row["count"]) if row else 0

    # Blocking helpers -------------------------------------------------

    def _select_record(self, tenant_id: str, record_id: str) -> Record | None:
        row = self.db.query_one(
            f"SELECT {_RECORD_COLUMNS} FROM records WHERE tenant_id = ? AND id = ?",
            [tenant_id, record_id],
        )
        return _row_to_record(row) if row is not None else None

    def _write_vector(self, vector: VectorRecord, now: int) -> None:
        with self.db.transaction() as cursor:
            # updated_at strictly increases across writes of the same vector.
            previous = cursor.execute("SELECT updated_at FROM record_vectors WHERE id = ?", [vector.id]).fetchone()
            if previous is not None and previous[0] >= now:
                now = previous[0] + 1
            cursor.execute(
                """
                INSERT INTO record_vectors (
                  id, tenant_id, record_id, content, embedding, dimensions, metadata_json, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  tenant_id = excluded.tenant_id,
                  record_id = excluded.record_id,
                  content = excluded.content,
                  embedding = excluded.embedding,
                  dimensions = excluded.dimensions,
                  metadata_json = excluded.metadata_json,
                  updated_at = excluded.updated_at
                """,
                [
                    vector.id,
                    vector.tenant_id,
                    vector.record_id,
                    vector.content,
                    array("f", vector.embedding).tobytes(),
                    len(vector.embedding),
                    orjson.dumps(vector.metadata.to_dict()).decode("utf-8"),
                    now,
                    now,
                ],
            )

    def _delete_orphans(self, tenant_id: str) -> int:
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                DELETE FROM record_vectors
                WHERE tenant_id = ?
                  AND NOT EXISTS (
                    SELECT 1 FROM records r
                    WHERE r.id = record_vectors.record_id AND r.tenant_id = record_vectors.tenant_id
                  )
                """,
                [tenant_id],
            )
            return cursor.rowcount

    async def _run(self, func: Callable[..., T], *args: Any, operation: str) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            raise classify_store_error(exc, operation) from exc


def _row_to_record(row: Any) -> Record:
    return Record(
        id=row["id"],
        tenant_id=row["tenant_id"],
        fields=orjson.loads(row["fields_json"] or "{}"),
        created_at=from_ms(row["created_at"]),
        updated_at=from_ms(row["updated_at"]),
    )


def _row_to_vector(row: Any) -> VectorRecord:
    floats = array("f")
    floats.frombytes(row["embedding"])
    return VectorRecord(
        id=row["id"],
        tenant_id=row["tenant_id"],
        record_id=row["record_id"],
        content=row["content"],
        embedding=list(floats),
        metadata=VectorMetadata.from_dict(orjson.loads(row["metadata_json"] or "{}")),
        created_at=from_ms(row["created_at"]),
        updated_at=from_ms(row["updated_at"]),
    )


__all__ = ["RecordStore", "fetch_backoff_ms", "classify_store_error", "FETCH_BACKOFF_BASE_MS", "FETCH_BACKOFF_CAP_MS"]
