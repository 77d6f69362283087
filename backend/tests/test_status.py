"""Tests for the tenant status registry."""

import pytest

from vector_sync.models.entities import SyncState
from vector_sync.sync.status import SyncStatusRegistry


def test_unknown_tenant_has_no_status() -> None:
    assert SyncStatusRegistry().get("t1") is None


def test_moving_average_is_seeded_by_first_sample() -> None:
    registry = SyncStatusRegistry()
    registry.record_success("t1", 100)
    assert registry.get("t1").performance.average_processing_time_ms == 100

    registry.record_success("t1", 200)
    assert registry.get("t1").performance.average_processing_time_ms == pytest.approx(130.0)

    registry.record_success("t1", 30)
    assert registry.get("t1").performance.average_processing_time_ms == pytest.approx(100.0)
    assert registry.get("t1").processed == 3


def test_token_usage_drives_cost_estimate() -> None:
    registry = SyncStatusRegistry(cost_per_1k_tokens=0.0001)
    registry.record_success("t1", 10, token_count=1500)
    registry.record_success("t1", 10, token_count=500)
    perf = registry.get("t1").performance
    assert perf.token_count == 2000
    assert perf.cost_estimate == pytest.approx(0.0002)


def test_state_transitions() -> None:
    registry = SyncStatusRegistry()
    registry.begin("t1", expected=2)
    registry.begin("t1", expected=1)
    assert registry.get("t1").state is SyncState.SYNCING
    assert registry.get("t1").total == 3

    registry.finish("t1", error="boom")
    assert registry.get("t1").state is SyncState.SYNCING
    assert registry.get("t1").in_flight == 1

    registry.finish("t1")
    status = registry.get("t1")
    assert status.state is SyncState.IDLE
    assert status.last_error == "boom"

    registry.begin("t1")
    registry.record_failure("t1", "provider down")
    registry.finish("t1", error="provider down")
    status = registry.get("t1")
    assert status.state is SyncState.ERROR
    assert status.failed == 1


def test_readers_get_copies() -> None:
    registry = SyncStatusRegistry()
    registry.record_success("t1", 5)
    copy = registry.get("t1")
    copy.processed = 99
    assert registry.get("t1").processed == 1
