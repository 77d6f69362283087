"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from vector_sync.core.config import Settings, get_settings
from vector_sync.db.records import RecordStore
from vector_sync.db.sqlite import SQLiteDatabase
from vector_sync.sync.diagnostics import VectorDiagnostics
from vector_sync.sync.embeddings import EmbeddingClient, build_embedding_client
from vector_sync.sync.orchestrator import SyncOrchestrator

_DB: SQLiteDatabase | None = None
_STORE: RecordStore | None = None
_EMBEDDER: EmbeddingClient | None = None
_ORCHESTRATOR: SyncOrchestrator | None = None
_DIAGNOSTICS: VectorDiagnostics | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_record_store() -> RecordStore:
    global _STORE
    if _STORE is None:
        _STORE = RecordStore(
            get_database(),
            default_fetch_attempts=get_app_settings().fetch_max_attempts,
        )
    return _STORE


def get_embedding_client() -> EmbeddingClient:
    global _EMBEDDER
    if _EMBEDDER is None:
        _EMBEDDER = build_embedding_client(get_app_settings())
    return _EMBEDDER


def get_orchestrator() -> SyncOrchestrator:
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        _ORCHESTRATOR = SyncOrchestrator(
            store=get_record_store(),
            embedder=get_embedding_client(),
            settings=get_app_settings(),
        )
    return _ORCHESTRATOR


def get_diagnostics() -> VectorDiagnostics:
    global _DIAGNOSTICS
    if _DIAGNOSTICS is None:
        orchestrator = get_orchestrator()
        _DIAGNOSTICS = VectorDiagnostics(
            store=orchestrator.store,
            embedder=orchestrator.embedder,
            orchestrator=orchestrator,
        )
    return _DIAGNOSTICS


async def close_resources() -> None:
    """Stop background work and release the database connection."""
    global _DB, _STORE, _EMBEDDER, _ORCHESTRATOR, _DIAGNOSTICS
    if _ORCHESTRATOR is not None:
        await _ORCHESTRATOR.shutdown()
    if _DB is not None:
        _DB.close()
    _DB = None
    _STORE = None
    _EMBEDDER = None
    _ORCHESTRATOR = None
    _DIAGNOSTICS = None


__all__ = [
    "get_app_settings",
    "get_database",
    "get_record_store",
    "get_embedding_client",
    "get_orchestrator",
    "get_diagnostics",
    "close_resources",
]
