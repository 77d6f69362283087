"""Per-tenant synchronization status map."""

from __future__ import annotations

import copy
import threading
from datetime import datetime

from vector_sync.models.entities import SyncState, SyncStatus
from vector_sync.utils.time import utc_now

LATENCY_SMOOTHING = 0.3


class SyncStatusRegistry:
    """Lock-guarded map of tenant id to ``SyncStatus``.

    Entries are created lazily and live only as long as the owning
    orchestrator. Readers get copies, never the live entry.
    """

    def __init__(self, cost_per_1k_tokens: float = 0.0) -> None:
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self._lock = threading.Lock()
        self._statuses: dict[str, SyncStatus] = {}

    def get(self, tenant_id: str) -> SyncStatus | None:
        with self._lock:
            status = self._statuses.get(tenant_id)
            return copy.deepcopy(status) if status is not None else None

    def begin(self, tenant_id: str, expected: int = 0) -> None:
        """Mark work starting for ``tenant_id``; ``expected`` adds to the total."""
        with self._lock:
            status = self._get_or_create(tenant_id)
            status.in_flight += 1
            status.total += expected
            status.state = SyncState.SYNCING

    def add_expected(self, tenant_id: str, count: int) -> None:
        with self._lock:
            self._get_or_create(tenant_id).total += count

    def record_success(self, tenant_id: str, elapsed_ms: float, token_count: int = 0) -> None:
        with self._lock:
            status = self._get_or_create(tenant_id)
            status.processed += 1
            status.last_sync_time = utc_now()
            perf = status.performance
            if perf.samples == 0:
                perf.average_processing_time_ms = float(elapsed_ms)
            else:
                perf.average_processing_time_ms = (
                    perf.average_processing_time_ms * (1 - LATENCY_SMOOTHING) + elapsed_ms * LATENCY_SMOOTHING
                )
            perf.samples += 1
            perf.token_count += token_count
            perf.cost_estimate = perf.token_count / 1000 * self.cost_per_1k_tokens

    def record_failure(self, tenant_id: str, error: str) -> None:
        with self._lock:
            status = self._get_or_create(tenant_id)
            status.failed += 1
            status.last_error = error

    def finish(self, tenant_id: str, error: str | None = None, synced_at: datetime | None = None) -> None:
        """Close a unit of work opened with ``begin``."""
        with self._lock:
            status = self._get_or_create(tenant_id)
            status.in_flight = max(0, status.in_flight - 1)
            if error is not None:
                status.last_error = error
            if synced_at is not None:
                status.last_sync_time = synced_at
            if status.in_flight:
                status.state = SyncState.SYNCING
            elif error is not None:
                status.state = SyncState.ERROR
            else:
                status.state = SyncState.IDLE

    def _get_or_create(self, tenant_id: str) -> SyncStatus:
        status = self._statuses.get(tenant_id)
        if status is None:
            status = SyncStatus(tenant_id=tenant_id)
            self._statuses[tenant_id] = status
        return status


__all__ = ["SyncStatusRegistry", "LATENCY_SMOOTHING"]
