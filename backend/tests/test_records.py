"""Tests for the SQLite-backed record store."""

from __future__ import annotations

import sqlite3
from datetime import timedelta
from unittest.mock import Mock

import pytest

from vector_sync.core.errors import ReferentialViolation, StoreError, StorePermissionError
from vector_sync.db.records import RecordStore, classify_store_error, fetch_backoff_ms
from vector_sync.models.entities import Record, VectorMetadata, VectorRecord

from conftest import BASE_TIME


def _vector(tenant_id: str, record_id: str, dims: int = 4) -> VectorRecord:
    return VectorRecord(
        id=record_id,
        tenant_id=tenant_id,
        record_id=record_id,
        content="Proyecto",
        embedding=[0.5] * dims,
        metadata=VectorMetadata(
            last_update=BASE_TIME.isoformat(),
            content_version=1,
            processed_fields=["nombre"],
            dimensions=dims,
            model="fake-embedding",
            content_hash="abc",
        ),
    )


def _scripted(monkeypatch: pytest.MonkeyPatch, store: RecordStore, outcomes: list) -> list:
    """Make ``_select_record`` return or raise the given outcomes in order."""
    calls: list = []

    def fake_select(tenant_id: str, record_id: str):
        calls.append((tenant_id, record_id))
        outcome = outcomes[len(calls) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(store, "_select_record", fake_select)
    return calls


def test_fetch_backoff_doubles_and_caps() -> None:
    assert [fetch_backoff_ms(attempt) for attempt in range(1, 7)] == [500, 1000, 2000, 4000, 8000, 15000]


def test_classify_store_error() -> None:
    assert isinstance(classify_store_error(sqlite3.OperationalError("attempt to write a readonly database"), "x"), StorePermissionError)
    assert isinstance(classify_store_error(sqlite3.IntegrityError("FOREIGN KEY constraint failed"), "x"), ReferentialViolation)
    assert type(classify_store_error(sqlite3.OperationalError("disk I/O error"), "x")) is StoreError


@pytest.mark.asyncio
async def test_fetch_one_retries_until_visible(store, seed, fake_sleep, monkeypatch) -> None:
    record = Record(id="p1", tenant_id="t1", fields={"nombre": "Mirador"}, created_at=BASE_TIME, updated_at=BASE_TIME)
    calls = _scripted(monkeypatch, store, [None, sqlite3.OperationalError("database is locked"), record])

    fetched = await store.fetch_one("t1", "p1", max_attempts=3)

    assert fetched is record
    assert len(calls) == 3
    assert fake_sleep.calls == [0.5, 1.0]


@pytest.mark.asyncio
async def test_fetch_one_returns_none_when_never_found(store, seed, fake_sleep) -> None:
    seed.tenant("t1")

    assert await store.fetch_one("t1", "missing", max_attempts=5) is None
    assert fake_sleep.calls == [0.5, 1.0, 2.0, 4.0]
    assert fake_sleep.total == 7.5


@pytest.mark.asyncio
async def test_fetch_one_stops_on_permission_error(store, fake_sleep, monkeypatch) -> None:
    calls = _scripted(monkeypatch, store, [sqlite3.OperationalError("not authorized")])

    with pytest.raises(StorePermissionError):
        await store.fetch_one("t1", "p1", max_attempts=5)

    assert len(calls) == 1
    assert fake_sleep.calls == []


@pytest.mark.asyncio
async def test_fetch_one_raises_when_last_attempt_errors(store, fake_sleep, monkeypatch) -> None:
    _scripted(monkeypatch, store, [sqlite3.OperationalError("database is locked")] * 2)

    with pytest.raises(StoreError) as excinfo:
        await store.fetch_one("t1", "p1", max_attempts=2)

    assert "after 2 attempts" in excinfo.value.message
    assert fake_sleep.calls == [0.5]


@pytest.mark.asyncio
async def test_fetch_one_ignores_records_of_other_tenants(store, seed) -> None:
    seed.tenant("t1")
    seed.tenant("t2")
    seed.record("t2", "p1")

    assert await store.fetch_one("t1", "p1", max_attempts=1) is None
    assert (await store.fetch_one("t2", "p1", max_attempts=1)).fields["nombre"] == "Proyecto p1"


@pytest.mark.asyncio
async def test_fetch_changed_since_filters_by_tenant_and_time(store, seed) -> None:
    seed.tenant("t1")
    seed.tenant("t2")
    seed.record("t1", "old", updated_at=BASE_TIME)
    seed.record("t1", "new", updated_at=BASE_TIME + timedelta(hours=2))
    seed.record("t2", "other", updated_at=BASE_TIME + timedelta(hours=2))

    changed = await store.fetch_changed_since("t1", BASE_TIME + timedelta(hours=1))

    assert [record.id for record in changed] == ["new"]
    assert changed[0].updated_at == BASE_TIME + timedelta(hours=2)


@pytest.mark.asyncio
async def test_list_active_tenants_skips_inactive(store, seed) -> None:
    seed.tenant("b")
    seed.tenant("a")
    seed.tenant("z", active=False)

    assert await store.list_active_tenants() == ["a", "b"]


@pytest.mark.asyncio
async def test_upsert_rejects_missing_record_without_writing(store, seed, monkeypatch) -> None:
    seed.tenant("t1")
    writer = Mock()
    monkeypatch.setattr(store, "_write_vector", writer)

    with pytest.raises(ReferentialViolation):
        await store.upsert_vector(_vector("t1", "ghost"))

    writer.assert_not_called()
    assert seed.vector_count() == 0


@pytest.mark.asyncio
async def test_upsert_rejects_missing_tenant_without_writing(store, seed, monkeypatch) -> None:
    writer = Mock()
    monkeypatch.setattr(store, "_write_vector", writer)

    with pytest.raises(ReferentialViolation):
        await store.upsert_vector(_vector("nobody", "p1"))

    writer.assert_not_called()


@pytest.mark.asyncio
async def test_upsert_rejects_record_owned_by_another_tenant(store, seed) -> None:
    seed.tenant("t1")
    seed.tenant("t2")
    seed.record("t2", "p1")

    with pytest.raises(ReferentialViolation):
        await store.upsert_vector(_vector("t1", "p1"))
    assert seed.vector_count() == 0


@pytest.mark.asyncio
async def test_upsert_is_idempotent_per_record(store, seed) -> None:
    seed.tenant("t1")
    seed.record("t1", "p1")

    first = await store.upsert_vector(_vector("t1", "p1"))
    second = await store.upsert_vector(_vector("t1", "p1"))

    assert seed.vector_count() == 1
    assert second.created_at == first.created_at
    assert second.updated_at > first.updated_at
    assert second.embedding == [0.5] * 4
    assert second.metadata.processed_fields == ["nombre"]


@pytest.mark.asyncio
async def test_remove_orphaned_vectors_only_touches_missing_records(store, seed) -> None:
    seed.tenant("t1")
    seed.tenant("t2")
    for record_id in ("p1", "p2"):
        seed.record("t1", record_id)
        await store.upsert_vector(_vector("t1", record_id))
    seed.record("t2", "q1")
    await store.upsert_vector(_vector("t2", "q1"))

    seed.delete_record("p2")
    removed = await store.remove_orphaned_vectors("t1")

    assert removed == 1
    assert await store.get_vector("p2") is None
    assert await store.get_vector("p1") is not None
    assert await store.count_vectors("t2") == 1
    assert await store.remove_orphaned_vectors("t1") == 0


@pytest.mark.asyncio
async def test_upsert_advances_updated_at_within_the_same_millisecond(database, seed, fake_sleep) -> None:
    seed.tenant("t1")
    seed.record("t1", "p1")
    frozen = RecordStore(database, sleep=fake_sleep, clock=lambda: BASE_TIME)

    first = await frozen.upsert_vector(_vector("t1", "p1"))
    second = await frozen.upsert_vector(_vector("t1", "p1"))
    third = await frozen.upsert_vector(_vector("t1", "p1"))

    assert first.updated_at == BASE_TIME
    assert first.updated_at < second.updated_at < third.updated_at
    assert third.created_at == first.created_at
