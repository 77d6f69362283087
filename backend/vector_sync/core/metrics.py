"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

WEBHOOK_REQUESTS = Counter(
    "vsync_webhook_requests_total",
    "Webhook notifications by response status",
    labelnames=("status",),
    registry=REGISTRY,
)

RECORDS_PROCESSED = Counter(
    "vsync_records_processed_total",
    "Records that reached the DONE stage",
    labelnames=("path",),
    registry=REGISTRY,
)

RECORDS_FAILED = Counter(
    "vsync_records_failed_total",
    "Records that ended in the FAILED stage",
    labelnames=("path", "kind"),
    registry=REGISTRY,
)

EMBEDDING_LATENCY = Histogram(
    "vsync_embedding_latency_seconds",
    "Latency of a single embedding call including retries",
    registry=REGISTRY,
)

SWEEP_DURATION = Histogram(
    "vsync_sweep_duration_seconds",
    "Duration of a backup sweep cycle",
    registry=REGISTRY,
)

ORPHANS_REMOVED = Counter(
    "vsync_orphan_vectors_removed_total",
    "Vector records deleted because their record disappeared",
    registry=REGISTRY,
)

IN_FLIGHT = Gauge(
    "vsync_background_tasks",
    "Tracked background processing tasks",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "WEBHOOK_REQUESTS",
    "RECORDS_PROCESSED",
    "RECORDS_FAILED",
    "EMBEDDING_LATENCY",
    "SWEEP_DURATION",
    "ORPHANS_REMOVED",
    "IN_FLIGHT",
    "metrics_response",
]
