"""Webhook ingress for record change notifications."""

from __future__ import annotations

import asyncio
import time
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from vector_sync.api.dependencies import get_app_settings, get_orchestrator
from vector_sync.core.config import Settings
from vector_sync.core.errors import NotFoundRace, PayloadValidationError, SyncError
from vector_sync.core.logging import ctx, get_logger
from vector_sync.core.metrics import WEBHOOK_REQUESTS
from vector_sync.models.dto import WebhookPayload, WebhookResponse
from vector_sync.models.entities import ChangeEvent, Operation
from vector_sync.sync.orchestrator import SyncOrchestrator
from vector_sync.utils.ids import request_id as new_request_id
from vector_sync.utils.time import elapsed_ms, utc_now

logger = get_logger(__name__)

router = APIRouter()

RETRY_AFTER_SECONDS = 2


def parse_change_event(body: Any) -> ChangeEvent:
    """Validate a notification body into a ``ChangeEvent``."""
    if not isinstance(body, dict):
        raise PayloadValidationError("Request body must be a JSON object")
    try:
        payload = WebhookPayload.model_validate(body)
    except ValidationError as exc:
        raise PayloadValidationError(f"Invalid payload: {exc.errors()[0]['msg']}") from exc
    missing = payload.missing_fields()
    if missing:
        raise PayloadValidationError(f"Missing required fields: {', '.join(missing)}", missing_fields=missing)
    operation = Operation.UPDATE
    if payload.operation:
        try:
            operation = Operation(payload.operation.strip().upper())
        except ValueError as exc:
            raise PayloadValidationError(f"Unsupported event: {payload.operation}") from exc
    return ChangeEvent(
        tenant_id=payload.tenant_id.strip(),
        record_id=payload.record_id.strip(),
        operation=operation,
        occurred_at=payload.timestamp,
    )


@router.post("/project-update", response_model=WebhookResponse, summary="Record change notification")
async def project_update(
    request: Request,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_app_settings),
) -> JSONResponse:
    started = time.perf_counter()
    request_id = new_request_id()
    try:
        body = await request.json()
    except ValueError:
        body = None
    logger.info("Webhook received", extra=ctx(request_id=request_id, payload=body))

    try:
        event = parse_change_event(body)
    except PayloadValidationError as exc:
        return _respond(
            400,
            request_id,
            started,
            error=exc.message,
            error_kind=exc.kind,
            missing_fields=exc.missing_fields or None,
        )

    await orchestrator.settle(event.operation)
    task = orchestrator.submit(event.tenant_id, event.record_id)
    ids = {"tenant_id": event.tenant_id, "record_id": event.record_id}
    try:
        # shield: the deadline stops the wait, not the processing.
        await asyncio.wait_for(asyncio.shield(task), timeout=settings.webhook_timeout_seconds)
    except asyncio.TimeoutError:
        return _respond(
            504,
            request_id,
            started,
            error=f"Processing exceeded {settings.webhook_timeout_seconds:g}s; continuing in background",
            error_kind="timeout",
            **ids,
        )
    except asyncio.CancelledError:
        # Only an operator cancel of the processing task is answered here.
        if not task.cancelled():
            raise
        return _respond(
            500,
            request_id,
            started,
            error="Processing cancelled by operator",
            error_kind="cancelled",
            **ids,
        )
    except NotFoundRace as exc:
        return _respond(
            404,
            request_id,
            started,
            error=exc.message,
            error_kind=exc.kind,
            retryable=True,
            retry_after=RETRY_AFTER_SECONDS,
            details=exc.to_dict(),
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
            **ids,
        )
    except SyncError as exc:
        return _respond(
            500, request_id, started, error=exc.message, error_kind=exc.kind, details=exc.to_dict(), **ids
        )
    except Exception as exc:
        return _respond(500, request_id, started, error=str(exc) or "Internal error", error_kind="unexpected", **ids)
    return _respond(200, request_id, started, **ids)


def _respond(
    status_code: int,
    request_id: str,
    started: float,
    headers: dict[str, str] | None = None,
    **fields: Any,
) -> JSONResponse:
    response = WebhookResponse(
        success=status_code == 200,
        request_id=request_id,
        elapsed_ms=elapsed_ms(started),
        timestamp=utc_now(),
        **fields,
    )
    WEBHOOK_REQUESTS.labels(status=str(status_code)).inc()
    log = logger.info if status_code == 200 else logger.warning
    log(
        "Webhook handled",
        extra=ctx(
            request_id=request_id,
            status=status_code,
            tenant_id=response.tenant_id,
            record_id=response.record_id,
            error=response.error,
            elapsed_ms=response.elapsed_ms,
        ),
    )
    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(mode="json", by_alias=True, exclude_none=True),
        headers=headers,
    )


__all__ = ["router", "parse_change_event"]
