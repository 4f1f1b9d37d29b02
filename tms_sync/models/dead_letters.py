from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class DeadLetterItem(BaseModel):
    id: str
    event_type: str
    raw_payload: str
    error: str
    attempts: int = Field(ge=0)
    first_failed_at: datetime
    last_attempt_at: datetime
    next_retry_at: datetime | None = None
    permanent: bool = False


class DeadLetterStats(BaseModel):
    count: int
    by_event_type: dict[str, int]
    max_retries_reached: int
    oldest_failed_at: datetime | None = None


class DeadLetterListResponse(BaseModel):
    items: list[DeadLetterItem]
    stats: DeadLetterStats


class DeadLetterRetryResponse(BaseModel):
    success: bool
    id: str
    attempts: int | None = None
    error: str | None = None


class DeadLetterDeleteResponse(BaseModel):
    success: bool


class DeadLetterClearResponse(BaseModel):
    success: bool
    removed: int


class RetrySweepResponse(BaseModel):
    retried: int
    succeeded: int
    failed: int
    purged: int
    overflow_alerted: bool
