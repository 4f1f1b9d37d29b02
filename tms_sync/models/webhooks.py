from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class WebhookAck(BaseModel):
    success: bool
    duplicate: bool | None = None
    queued: bool | None = None
    event: str | None = None


class WebhookLiveness(BaseModel):
    status: str
    webhook: str
    timestamp: datetime
