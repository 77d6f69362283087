"""Error taxonomy for the synchronization pipeline."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for classified pipeline failures."""

    kind = "sync_error"
    retryable = False

    def __init__(self, message: str, *, tenant_id: str | None = None, record_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.tenant_id = tenant_id
        self.record_id = record_id
        self.stage: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
            "tenant_id": self.tenant_id,
            "record_id": self.record_id,
            "stage": self.stage,
        }


class PayloadValidationError(SyncError):
    """Inbound notification is malformed or incomplete."""

    kind = "validation"

    def __init__(self, message: str, missing_fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing_fields = missing_fields or []


class NotFoundRace(SyncError):
    """Record still invisible after every fetch attempt.

    Usually the notification arrived before the triggering write was committed,
    so callers are told to retry rather than treating it as a fault.
    """

    kind = "not_found"
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        tenant_id: str | None = None,
        record_id: str | None = None,
        attempts: int = 0,
        probe_found: bool | None = None,
    ) -> None:
        super().__init__(message, tenant_id=tenant_id, record_id=record_id)
        self.attempts = attempts
        self.probe_found = probe_found

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["attempts"] = self.attempts
        payload["probe_found"] = self.probe_found
        return payload


class StoreError(SyncError):
    """Record store request failed (connectivity, query error)."""

    kind = "store"


class StorePermissionError(StoreError):
    """Record store denied access; never retried."""

    kind = "permission"


class ProviderError(SyncError):
    """Embedding provider failed after its retry budget."""

    kind = "provider"


class ProviderPermissionError(ProviderError):
    """Embedding provider rejected credentials or access; never retried."""

    kind = "provider_permission"


class ReferentialViolation(SyncError):
    """Vector write refused because its record or tenant does not exist."""

    kind = "referential"


__all__ = [
    "SyncError",
    "PayloadValidationError",
    "NotFoundRace",
    "StoreError",
    "StorePermissionError",
    "ProviderError",
    "ProviderPermissionError",
    "ReferentialViolation",
]
