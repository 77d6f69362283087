"""Test fixtures for vector-sync."""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import orjson
import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from vector_sync.core.config import Settings  # noqa: E402
from vector_sync.core.errors import ProviderPermissionError  # noqa: E402
from vector_sync.db.records import RecordStore  # noqa: E402
from vector_sync.db.sqlite import SQLiteDatabase  # noqa: E402
from vector_sync.sync.embeddings import EmbeddingClient, ProviderEmbedding  # noqa: E402
from vector_sync.sync.orchestrator import SyncOrchestrator  # noqa: E402
from vector_sync.utils.time import to_ms  # noqa: E402

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("VSYNC_DB_PATH", str(tmp_path / "service.db"))
    monkeypatch.delenv("VSYNC_CONFIG", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    from vector_sync.api import dependencies as deps

    def _reset() -> None:
        deps.get_app_settings.cache_clear()
        if deps._DB is not None:
            deps._DB.close()
        deps._DB = None
        deps._STORE = None
        deps._EMBEDDER = None
        deps._ORCHESTRATOR = None
        deps._DIAGNOSTICS = None

    _reset()
    yield
    _reset()


class FakeSleep:
    """Records requested waits instead of sleeping; optional hook per call."""

    def __init__(self, hook: Callable[[float], None] | None = None) -> None:
        self.calls: list[float] = []
        self.hook = hook

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.hook is not None:
            self.hook(seconds)
        await asyncio.sleep(0)

    @property
    def total(self) -> float:
        return sum(self.calls)


class StepClock:
    """Clock that advances one second per reading."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.current = start

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(seconds=1)
        return self.current


class FakeProvider:
    """Embedding provider returning fixed-length vectors derived from the text."""

    def __init__(self, dim: int = 8, fail_on: str | None = None, failures_before_success: int = 0) -> None:
        self.model = "fake-embedding"
        self.dim = dim
        self.fail_on = fail_on
        self.failures_before_success = failures_before_success
        self.calls: list[str] = []
        self.permission_denied = False
        self.delay = 0.0

    async def create_embedding(self, text: str) -> ProviderEmbedding:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.permission_denied:
            raise ProviderPermissionError("invalid api key")
        if self.fail_on is not None and self.fail_on in text:
            raise RuntimeError("provider unavailable")
        if self.failures_before_success > 0:
            self.failures_before_success -= 1
            raise RuntimeError("transient provider error")
        base = float(len(text) % 7 + 1)
        return ProviderEmbedding(vector=[base + idx for idx in range(self.dim)], token_count=len(text.split()))


class Seeder:
    """Writes tenants and records the way the system of record would."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def tenant(self, tenant_id: str, active: bool = True) -> None:
        self.db.execute(
            "INSERT INTO tenants (id, name, active, created_at) VALUES (?, ?, ?, ?)",
            [tenant_id, tenant_id.upper(), 1 if active else 0, to_ms(BASE_TIME)],
        )
        self.db.commit()

    def record(
        self,
        tenant_id: str,
        record_id: str,
        fields: dict[str, Any] | None = None,
        updated_at: datetime = BASE_TIME,
    ) -> None:
        payload = fields if fields is not None else {"nombre": f"Proyecto {record_id}", "descripcion": "Departamentos"}
        self.db.execute(
            """
            INSERT INTO records (id, tenant_id, fields_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET fields_json = excluded.fields_json, updated_at = excluded.updated_at
            """,
            [record_id, tenant_id, orjson.dumps(payload).decode("utf-8"), to_ms(BASE_TIME), to_ms(updated_at)],
        )
        self.db.commit()

    def delete_record(self, record_id: str) -> None:
        self.db.execute("DELETE FROM records WHERE id = ?", [record_id])
        self.db.commit()

    def vector_count(self, tenant_id: str | None = None) -> int:
        if tenant_id is None:
            row = self.db.query_one("SELECT COUNT(*) AS count FROM record_vectors")
        else:
            row = self.db.query_one("SELECT COUNT(*) AS count FROM record_vectors WHERE tenant_id = ?", [tenant_id])
        return int(row["count"])


@pytest.fixture
def database(tmp_path: Path) -> SQLiteDatabase:
    db = SQLiteDatabase(tmp_path / "records.db")
    db.ensure_schema()
    yield db
    db.close()


@pytest.fixture
def seed(database: SQLiteDatabase) -> Seeder:
    return Seeder(database)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "records.db",
        vector_dimensions=16,
        batch_size=2,
        insert_settle_delay_ms=0,
    )


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def store(database: SQLiteDatabase, fake_sleep: FakeSleep, clock: StepClock) -> RecordStore:
    return RecordStore(database, sleep=fake_sleep, clock=clock)


@pytest.fixture
def embedder(provider: FakeProvider, settings: Settings, fake_sleep: FakeSleep) -> EmbeddingClient:
    return EmbeddingClient(provider, dimensions=settings.vector_dimensions, sleep=fake_sleep)


@pytest.fixture
def orchestrator(
    store: RecordStore,
    embedder: EmbeddingClient,
    settings: Settings,
    fake_sleep: FakeSleep,
) -> SyncOrchestrator:
    return SyncOrchestrator(store=store, embedder=embedder, settings=settings, sleep=fake_sleep)
