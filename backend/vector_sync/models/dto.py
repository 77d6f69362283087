"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, ValidationError, ValidatorFunctionWrapHandler, field_validator

from vector_sync.core.logging import ctx, get_logger
from vector_sync.models.entities import SyncState, SyncStatus, TenantSyncReport

logger = get_logger(__name__)


class WebhookPayload(BaseModel):
    """Change notification; deployment field names first, generic names accepted."""

    tenant_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("inmobiliaria_id", "tenant_id"),
    )
    record_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("project_id", "record_id"),
    )
    operation: str | None = Field(
        default=None,
        validation_alias=AliasChoices("event", "operation"),
    )
    timestamp: datetime | None = None

    @field_validator("timestamp", mode="wrap")
    @classmethod
    def _lenient_timestamp(cls, value: Any, handler: ValidatorFunctionWrapHandler) -> datetime | None:
        # Unparseable values become None.
        try:
            return handler(value)
        except ValidationError:
            logger.warning("Ignoring unparseable webhook timestamp", extra=ctx(raw_timestamp=value))
            return None

    model_config = {"extra": "ignore"}

    def missing_fields(self) -> list[str]:
        missing: list[str] = []
        if not (self.tenant_id or "").strip():
            missing.append("inmobiliaria_id")
        if not (self.record_id or "").strip():
            missing.append("project_id")
        return missing


class WebhookResponse(BaseModel):
    success: bool
    error: str | None = None
    error_kind: str | None = None
    missing_fields: list[str] | None = None
    retryable: bool | None = None
    retry_after: int | None = Field(default=None, serialization_alias="retryAfter")
    details: dict[str, Any] | None = None
    tenant_id: str | None = None
    record_id: str | None = None
    request_id: str
    elapsed_ms: int
    timestamp: datetime


class PerformanceResponse(BaseModel):
    average_processing_time_ms: float
    samples: int
    token_count: int
    cost_estimate: float


class SyncStatusResponse(BaseModel):
    tenant_id: str
    state: Literal["IDLE", "SYNCING", "ERROR", "NO_DATA"]
    total: int = 0
    processed: int = 0
    failed: int = 0
    in_flight: int = 0
    last_sync_time: datetime | None = None
    last_error: str | None = None
    message: str | None = None
    performance: PerformanceResponse = Field(
        default_factory=lambda: PerformanceResponse(
            average_processing_time_ms=0.0, samples=0, token_count=0, cost_estimate=0.0
        )
    )

    @classmethod
    def from_status(cls, status: SyncStatus) -> "SyncStatusResponse":
        return cls(
            tenant_id=status.tenant_id,
            state=status.state.value,
            total=status.total,
            processed=status.processed,
            failed=status.failed,
            in_flight=status.in_flight,
            last_sync_time=status.last_sync_time,
            last_error=status.last_error,
            performance=PerformanceResponse(
                average_processing_time_ms=status.performance.average_processing_time_ms,
                samples=status.performance.samples,
                token_count=status.performance.token_count,
                cost_estimate=status.performance.cost_estimate,
            ),
        )

    @classmethod
    def no_data(cls, tenant_id: str) -> "SyncStatusResponse":
        return cls(
            tenant_id=tenant_id,
            state=SyncState.NO_DATA.value,
            message="No synchronization activity recorded for this tenant",
        )


class RecordFailureResponse(BaseModel):
    record_id: str
    stage: str
    kind: str
    error: str


class TenantSyncResponse(BaseModel):
    tenant_id: str
    since: datetime
    total: int
    processed: int
    failed: int
    orphans_removed: int
    elapsed_ms: int
    failures: list[RecordFailureResponse]

    @classmethod
    def from_report(cls, report: TenantSyncReport) -> "TenantSyncResponse":
        return cls(
            tenant_id=report.tenant_id,
            since=report.since,
            total=report.total,
            processed=report.processed,
            failed=report.failed,
            orphans_removed=report.orphans_removed,
            elapsed_ms=report.elapsed_ms,
            failures=[
                RecordFailureResponse(
                    record_id=failure.record_id,
                    stage=failure.stage.value,
                    kind=failure.kind,
                    error=failure.error,
                )
                for failure in report.failures
            ],
        )


class MonitorResponse(BaseModel):
    status: Literal["started", "already_running", "stopped", "running", "idle"]
    running: bool
    interval_seconds: float
    background_tasks: int


class VectorDiagnosisResponse(BaseModel):
    record_id: str
    record_exists: bool
    vector_exists: bool
    tenant_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    has_content: bool = False
    has_embedding: bool = False
    dimensions: int | None = None
    metadata: dict[str, Any] | None = None
    error: str | None = None


class RepairRequest(BaseModel):
    tenant_id: str
    placeholder: bool = Field(default=False, description="Write a constant placeholder embedding")


class RepairResponse(BaseModel):
    success: bool
    record_id: str
    tenant_id: str
    duration_ms: int
    error: str | None = None
    diagnosis: VectorDiagnosisResponse | None = None


class HealthResponse(BaseModel):
    status: Literal["ok"]
    timestamp: datetime


__all__ = [
    "WebhookPayload",
    "WebhookResponse",
    "PerformanceResponse",
    "SyncStatusResponse",
    "RecordFailureResponse",
    "TenantSyncResponse",
    "MonitorResponse",
    "VectorDiagnosisResponse",
    "RepairRequest",
    "RepairResponse",
    "HealthResponse",
]
