"""Identifiers for requests and background work."""

from __future__ import annotations

import uuid


def request_id() -> str:
    """Short correlation id attached to a webhook request and its log lines."""
    return f"req_{uuid.uuid4().hex[:16]}"


def task_name(tenant_id: str, record_id: str) -> str:
    return f"process:{tenant_id}:{record_id}"
