"""Control surface: tenant sync, status, sweep loop and vector diagnostics."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query

from vector_sync.api.dependencies import get_diagnostics, get_orchestrator
from vector_sync.core.errors import StorePermissionError, SyncError
from vector_sync.core.logging import ctx, get_logger
from vector_sync.core.metrics import metrics_response
from vector_sync.models.dto import (
    MonitorResponse,
    RepairRequest,
    RepairResponse,
    SyncStatusResponse,
    TenantSyncResponse,
    VectorDiagnosisResponse,
)
from vector_sync.sync.diagnostics import VectorDiagnostics
from vector_sync.sync.orchestrator import SyncOrchestrator

logger = get_logger(__name__)

router = APIRouter()


@router.post("/tenants/{tenant_id}/sync", response_model=TenantSyncResponse, summary="Force a tenant sync")
async def force_sync_tenant(
    tenant_id: str,
    force: bool = Query(default=False, description="Ignore the watermark and resync every record"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> TenantSyncResponse:
    try:
        report = await orchestrator.force_sync_tenant(tenant_id, full=force)
    except StorePermissionError as exc:
        raise HTTPException(status_code=403, detail=exc.message) from exc
    except SyncError as exc:
        raise HTTPException(status_code=502, detail=exc.message) from exc
    return TenantSyncResponse.from_report(report)


@router.get("/tenants/{tenant_id}/status", response_model=SyncStatusResponse, summary="Tenant sync status")
async def tenant_status(
    tenant_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncStatusResponse:
    status = orchestrator.get_status(tenant_id)
    if status is None:
        return SyncStatusResponse.no_data(tenant_id)
    return SyncStatusResponse.from_status(status)


@router.get("/monitor", response_model=MonitorResponse, summary="Sweep loop state")
async def monitor_state(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> MonitorResponse:
    return _monitor_response(orchestrator, "running" if orchestrator.running else "idle")


@router.post("/monitor/start", response_model=MonitorResponse, summary="Start the backup sweep loop")
async def start_monitor(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> MonitorResponse:
    launched = orchestrator.launch()
    logger.info("Monitor start requested", extra=ctx(launched=launched))
    return _monitor_response(orchestrator, "started" if launched else "already_running")


@router.post("/monitor/stop", response_model=MonitorResponse, summary="Stop the backup sweep loop")
async def stop_monitor(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> MonitorResponse:
    orchestrator.stop()
    return _monitor_response(orchestrator, "stopped")


@router.post("/tasks/cancel", summary="Cancel tracked background processing")
async def cancel_tasks(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> dict[str, int]:
    cancelled = orchestrator.cancel_background()
    logger.warning("Background tasks cancelled by operator", extra=ctx(cancelled=cancelled))
    return {"cancelled": cancelled}


@router.get(
    "/vectors/{record_id}/diagnosis",
    response_model=VectorDiagnosisResponse,
    summary="Inspect the stored vector of a record",
)
async def diagnose_vector(
    record_id: str,
    diagnostics: VectorDiagnostics = Depends(get_diagnostics),
) -> VectorDiagnosisResponse:
    diagnosis = await diagnostics.check_vector(record_id)
    return VectorDiagnosisResponse(**asdict(diagnosis))


@router.post("/vectors/{record_id}/repair", response_model=RepairResponse, summary="Rewrite the vector of a record")
async def repair_vector(
    record_id: str,
    request: RepairRequest,
    diagnostics: VectorDiagnostics = Depends(get_diagnostics),
) -> RepairResponse:
    outcome = await diagnostics.repair_vector(request.tenant_id, record_id, placeholder=request.placeholder)
    return RepairResponse(
        success=outcome.success,
        record_id=outcome.record_id,
        tenant_id=outcome.tenant_id,
        duration_ms=outcome.duration_ms,
        error=outcome.error,
        diagnosis=VectorDiagnosisResponse(**asdict(outcome.diagnosis)) if outcome.diagnosis else None,
    )


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


def _monitor_response(orchestrator: SyncOrchestrator, status: str) -> MonitorResponse:
    return MonitorResponse(
        status=status,
        running=orchestrator.running,
        interval_seconds=orchestrator.settings.sweep_interval_seconds,
        background_tasks=orchestrator.background_tasks,
    )


__all__ = ["router"]
