"""Administrative vector checks and repairs layered on the record store."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from vector_sync.core.errors import SyncError
from vector_sync.core.logging import ctx, get_logger
from vector_sync.db.records import RecordStore
from vector_sync.sync.content import build_content
from vector_sync.sync.embeddings import EmbeddingClient
from vector_sync.sync.orchestrator import SyncOrchestrator
from vector_sync.utils.time import elapsed_ms

logger = get_logger(__name__)

PLACEHOLDER_VALUE = 0.1


@dataclass(slots=True)
class VectorDiagnosis:
    record_id: str
    record_exists: bool
    vector_exists: bool
    tenant_id: str | None = None
    created_at: Any = None
    updated_at: Any = None
    has_content: bool = False
    has_embedding: bool = False
    dimensions: int | None = None
    metadata: dict[str, Any] | None = None
    error: str | None = None


@dataclass(slots=True)
class RepairOutcome:
    success: bool
    record_id: str
    tenant_id: str
    duration_ms: int
    error: str | None = None
    diagnosis: VectorDiagnosis | None = field(default=None)


class VectorDiagnostics:
    """Operator tooling: inspect a record's vector or rewrite it by hand."""

    def __init__(self, store: RecordStore, embedder: EmbeddingClient, orchestrator: SyncOrchestrator) -> None:
        self.store = store
        self.embedder = embedder
        self.orchestrator = orchestrator

    async def check_vector(self, record_id: str) -> VectorDiagnosis:
        try:
            record_exists = await self.store.exists(record_id)
            if not record_exists:
                logger.warning("Diagnosis: record does not exist", extra=ctx(record_id=record_id))
                return VectorDiagnosis(
                    record_id=record_id,
                    record_exists=False,
                    vector_exists=False,
                    error="Record does not exist",
                )
            vector = await self.store.get_vector(record_id)
        except SyncError as exc:
            logger.error("Diagnosis query failed", extra=ctx(record_id=record_id, error=exc.message))
            return VectorDiagnosis(record_id=record_id, record_exists=False, vector_exists=False, error=exc.message)

        if vector is None:
            logger.warning("Diagnosis: vector not found", extra=ctx(record_id=record_id))
            return VectorDiagnosis(record_id=record_id, record_exists=True, vector_exists=False)

        diagnosis = VectorDiagnosis(
            record_id=record_id,
            record_exists=True,
            vector_exists=True,
            tenant_id=vector.tenant_id,
            created_at=vector.created_at,
            updated_at=vector.updated_at,
            has_content=bool(vector.content),
            has_embedding=bool(vector.embedding),
            dimensions=len(vector.embedding),
            metadata=vector.metadata.to_dict(),
        )
        logger.info("Diagnosis complete", extra=ctx(record_id=record_id, dimensions=diagnosis.dimensions))
        return diagnosis

    async def repair_vector(self, tenant_id: str, record_id: str, placeholder: bool = False) -> RepairOutcome:
        """Rewrite the vector for one record.

        With ``placeholder`` the embedding provider is bypassed and a constant
        vector is stored, which lets an operator unblock downstream search
        while the provider is unavailable. The referential pre-check applies
        either way.
        """
        started = time.perf_counter()
        logger.info("Repairing vector", extra=ctx(tenant_id=tenant_id, record_id=record_id, placeholder=placeholder))
        try:
            record = await self.store.fetch_one(tenant_id, record_id, max_attempts=1)
            if record is None:
                return RepairOutcome(
                    success=False,
                    record_id=record_id,
                    tenant_id=tenant_id,
                    duration_ms=elapsed_ms(started),
                    error="Record not found",
                )
            content = build_content(record, self.orchestrator.settings.content_fields)
            if placeholder:
                embedding = [PLACEHOLDER_VALUE] * self.embedder.dimensions
            else:
                embedding = await self.embedder.embed(content.text)
            vector = self.orchestrator.build_vector(tenant_id, record, content, embedding)
            if placeholder:
                vector.metadata.model = "placeholder"
            await self.store.upsert_vector(vector)
        except SyncError as exc:
            logger.error(
                "Vector repair failed",
                extra=ctx(tenant_id=tenant_id, record_id=record_id, kind=exc.kind, error=exc.message),
            )
            return RepairOutcome(
                success=False,
                record_id=record_id,
                tenant_id=tenant_id,
                duration_ms=elapsed_ms(started),
                error=exc.message,
            )
        outcome = RepairOutcome(
            success=True,
            record_id=record_id,
            tenant_id=tenant_id,
            duration_ms=elapsed_ms(started),
            diagnosis=await self.check_vector(record_id),
        )
        logger.info("Vector repaired", extra=ctx(tenant_id=tenant_id, record_id=record_id, duration_ms=outcome.duration_ms))
        return outcome


__all__ = ["VectorDiagnostics", "VectorDiagnosis", "RepairOutcome", "PLACEHOLDER_VALUE"]
