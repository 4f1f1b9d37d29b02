from __future__ import annotations

from typing import Any, Protocol


class SyncError(Exception):
    """Base class for sync engine failures."""


class StoreError(SyncError):
    """The local store rejected or failed a read/write."""


class ConcurrentUpdateError(StoreError):
    """A shipment kept changing underneath an optimistic update."""


class DeadLetterQueueError(SyncError):
    """The dead-letter queue backend could not be read or written."""


class EventSchemaError(SyncError):
    """A known event type arrived with a payload that can never be applied."""


class ReconciliationInProgressError(SyncError):
    """Another reconciliation run is still within its time window."""


class UpstreamError(SyncError):
    """Provider-level exception for PortPro API failures."""

    @property
    def category(self) -> str:
        message = str(self).lower()
        if (
            "connectivity error" in message
            or "http 429" in message
            or "http 500" in message
            or "http 502" in message
            or "http 503" in message
            or "http 504" in message
        ):
            return "transient"
        if (
            "token refresh failed" in message
            or "rejected credentials" in message
            or "endpoint not found" in message
            or "non-json" in message
        ):
            return "terminal"
        return "unknown"

    @property
    def retryable(self) -> bool:
        return self.category == "transient"


class UpstreamErrorLike(Protocol):
    @property
    def category(self) -> str: ...

    @property
    def retryable(self) -> bool: ...


def upstream_error_http_status(exc: UpstreamErrorLike) -> int:
    return 503 if exc.retryable else 502


def upstream_error_detail(*, operation: str, exc: UpstreamErrorLike) -> dict[str, Any]:
    return {
        "type": "upstream_error",
        "provider": "portpro",
        "operation": operation,
        "category": exc.category,
        "retryable": exc.retryable,
        "message": str(exc),
    }
