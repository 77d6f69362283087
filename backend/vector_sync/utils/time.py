"""Time helpers."""

from __future__ import annotations

import time
from datetime import datetime, timezone

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(tz=timezone.utc)


def to_ms(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds, assuming UTC when naive."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def from_ms(value: int | None) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    if value is None:
        return EPOCH
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def elapsed_ms(started: float) -> int:
    """Milliseconds elapsed since a ``time.perf_counter()`` reading."""
    return int((time.perf_counter() - started) * 1000)
