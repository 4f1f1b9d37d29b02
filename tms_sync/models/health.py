from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class WebhookVolume(BaseModel):
    total: int
    failed: int
    rate: int


class DeadLetterHealth(BaseModel):
    count: int
    max_retries_reached: int


class LastReconciliation(BaseModel):
    started_at: datetime | None = None
    status: str | None = None
    discrepancies: int = 0


class SyncHealthResponse(BaseModel):
    webhooks_last_24h: WebhookVolume
    dlq: DeadLetterHealth
    last_reconciliation: LastReconciliation
    health: Literal["healthy", "degraded", "critical"]
    issues: list[str]
    counters: dict[str, int]


class CleanupResponse(BaseModel):
    webhook_logs_deleted: int
    reconciliation_runs_deleted: int
    dlq_items_purged: int
