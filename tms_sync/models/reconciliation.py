from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


ReconciliationStatus = Literal["running", "completed", "timed_out", "failed"]


class ReconciliationRunRequest(BaseModel):
    triggered_by: str = Field(default="admin", min_length=1, max_length=64)


class ReconciliationRunSummary(BaseModel):
    id: str | None = None
    status: ReconciliationStatus
    triggered_by: str
    started_at: datetime
    completed_at: datetime | None = None
    records_scanned: int = 0
    records_created: int = 0
    records_updated: int = 0
    discrepancies: int = 0
    errors: int = 0
    duration_ms: int = 0
    error: str | None = None
