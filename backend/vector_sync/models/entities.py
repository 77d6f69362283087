"""Internal dataclasses representing records, vectors and sync state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Operation(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


class SyncState(str, Enum):
    IDLE = "IDLE"
    SYNCING = "SYNCING"
    ERROR = "ERROR"
    NO_DATA = "NO_DATA"


class ProcessingStage(str, Enum):
    """Per-record processing state machine."""

    RECEIVED = "RECEIVED"
    VERIFIED = "VERIFIED"
    FETCHED = "FETCHED"
    EMBEDDED = "EMBEDDED"
    UPSERTED = "UPSERTED"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass(slots=True)
class Record:
    id: str
    tenant_id: str
    fields: dict[str, Any]
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class VectorMetadata:
    last_update: str
    content_version: int
    processed_fields: list[str]
    dimensions: int
    model: str
    content_hash: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_update": self.last_update,
            "content_version": self.content_version,
            "processed_fields": list(self.processed_fields),
            "dimensions": self.dimensions,
            "model": self.model,
            "content_hash": self.content_hash,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VectorMetadata":
        return cls(
            last_update=data.get("last_update", ""),
            content_version=int(data.get("content_version", 0)),
            processed_fields=list(data.get("processed_fields") or []),
            dimensions=int(data.get("dimensions", 0)),
            model=data.get("model", ""),
            content_hash=data.get("content_hash", ""),
        )


@dataclass(slots=True)
class VectorRecord:
    """Derived artifact owned by this service, one per Record."""

    id: str
    tenant_id: str
    record_id: str
    content: str
    embedding: list[float]
    metadata: VectorMetadata
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class ChangeEvent:
    tenant_id: str
    record_id: str
    operation: Operation
    occurred_at: datetime | None = None


@dataclass(slots=True)
class Performance:
    average_processing_time_ms: float = 0.0
    samples: int = 0
    token_count: int = 0
    cost_estimate: float = 0.0


@dataclass(slots=True)
class SyncStatus:
    tenant_id: str
    total: int = 0
    processed: int = 0
    failed: int = 0
    last_sync_time: datetime | None = None
    state: SyncState = SyncState.IDLE
    last_error: str | None = None
    in_flight: int = 0
    performance: Performance = field(default_factory=Performance)


@dataclass(slots=True)
class RecordFailure:
    record_id: str
    stage: ProcessingStage
    kind: str
    error: str


@dataclass(slots=True)
class TenantSyncReport:
    tenant_id: str
    since: datetime
    total: int = 0
    processed: int = 0
    failed: int = 0
    orphans_removed: int = 0
    elapsed_ms: int = 0
    failures: list[RecordFailure] = field(default_factory=list)


__all__ = [
    "Operation",
    "SyncState",
    "ProcessingStage",
    "Record",
    "VectorMetadata",
    "VectorRecord",
    "ChangeEvent",
    "Performance",
    "SyncStatus",
    "RecordFailure",
    "TenantSyncReport",
]
