"""Dead-letter queue for webhook events whose handler failed.

Items live in one Redis hash keyed by item id. After the n-th failed
attempt the next retry is scheduled ``BACKOFF_SCHEDULE_SECONDS[n - 1]``
seconds later (1 min, 5 min, 15 min, 1 h, 4 h). Once ``attempts`` reaches
``max_retries`` the item keeps its place in the hash with no
``next_retry_at`` until an operator retries or deletes it.
"""

from __future__ import annotations

import logging
import random
import string
import time
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError
from redis.exceptions import RedisError

from tms_sync.domain.errors import DeadLetterQueueError
from tms_sync.models.dead_letters import DeadLetterItem, DeadLetterStats
from tms_sync.observability import incr_metric, log_event


DLQ_KEY = "portpro:dlq"
DEFAULT_MAX_RETRIES = 5
DEFAULT_RETENTION_SECONDS = 7 * 24 * 60 * 60
BACKOFF_SCHEDULE_SECONDS = (60, 300, 900, 3600, 14400)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def backoff_delay(attempts: int) -> timedelta:
    index = min(max(attempts, 1), len(BACKOFF_SCHEDULE_SECONDS)) - 1
    return timedelta(seconds=BACKOFF_SCHEDULE_SECONDS[index])


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _new_item_id() -> str:
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(7))
    return f"{int(time.time() * 1000)}-{suffix}"


class DeadLetterQueue:
    def __init__(
        self,
        redis_client: Any,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retention_seconds: int = DEFAULT_RETENTION_SECONDS,
        key: str = DLQ_KEY,
    ) -> None:
        self._redis = redis_client
        self.max_retries = max_retries
        self._retention_seconds = retention_seconds
        self._key = key

    def _save(self, item: DeadLetterItem) -> None:
        self._redis.hset(self._key, item.id, item.model_dump_json())

    def _decode(self, raw: str) -> DeadLetterItem | None:
        try:
            return DeadLetterItem.model_validate_json(raw)
        except ValidationError:
            log_event("dlq_item_corrupt", level=logging.WARNING, raw=raw[:200])
            return None

    def push(
        self,
        event_type: str,
        raw_payload: str,
        error: str,
        *,
        permanent: bool = False,
        now: datetime | None = None,
    ) -> DeadLetterItem | None:
        """Queue a failed event. Returns ``None`` if the backend is unavailable.

        Permanent failures are stored already exhausted so the retry sweep
        never picks them up.
        """
        now = now or _now_utc()
        attempts = self.max_retries if permanent else 1
        item = DeadLetterItem(
            id=_new_item_id(),
            event_type=event_type,
            raw_payload=raw_payload,
            error=error,
            attempts=attempts,
            first_failed_at=now,
            last_attempt_at=now,
            next_retry_at=None if attempts >= self.max_retries else now + backoff_delay(attempts),
            permanent=permanent,
        )
        try:
            self._save(item)
            self._redis.expire(self._key, self._retention_seconds)
        except RedisError as exc:
            incr_metric("webhook.dead_letter.persist_failed", event_type=event_type)
            log_event(
                "dlq_push_failed",
                level=logging.ERROR,
                event_type=event_type,
                error=str(exc),
            )
            return None
        incr_metric("webhook.dead_letter.created", event_type=event_type, permanent=permanent)
        log_event(
            "dlq_item_queued",
            level=logging.WARNING,
            item_id=item.id,
            event_type=event_type,
            permanent=permanent,
            next_retry_at=item.next_retry_at,
        )
        return item

    def get(self, item_id: str) -> DeadLetterItem | None:
        try:
            raw = self._redis.hget(self._key, item_id)
        except RedisError as exc:
            raise DeadLetterQueueError(f"dlq read failed: {exc}") from exc
        if raw is None:
            return None
        return self._decode(raw)

    def list_items(self, limit: int | None = None) -> list[DeadLetterItem]:
        try:
            raw_items = self._redis.hgetall(self._key) or {}
        except RedisError as exc:
            raise DeadLetterQueueError(f"dlq read failed: {exc}") from exc
        items = [item for item in (self._decode(raw) for raw in raw_items.values()) if item is not None]
        items.sort(key=lambda item: item.last_attempt_at, reverse=True)
        return items[:limit] if limit else items

    def ready_for_retry(self, now: datetime | None = None) -> list[DeadLetterItem]:
        now = now or _now_utc()
        return [
            item
            for item in self.list_items()
            if item.attempts < self.max_retries
            and (item.next_retry_at is None or item.next_retry_at <= now)
        ]

    def record_success(self, item_id: str) -> bool:
        removed = self.remove(item_id)
        if removed:
            incr_metric("dlq.retry.succeeded")
            log_event("dlq_item_resolved", item_id=item_id)
        return removed

    def record_failure(
        self,
        item_id: str,
        error: str,
        *,
        now: datetime | None = None,
    ) -> DeadLetterItem | None:
        """Count a failed attempt and schedule the next one.

        ``attempts`` never goes past ``max_retries``; at the limit
        ``next_retry_at`` is cleared and the item waits for an operator.
        """
        item = self.get(item_id)
        if item is None:
            return None
        now = now or _now_utc()
        attempts = min(item.attempts + 1, self.max_retries)
        exhausted = attempts >= self.max_retries
        updated = item.model_copy(
            update={
                "attempts": attempts,
                "error": error or item.error,
                "last_attempt_at": now,
                "next_retry_at": None if exhausted else now + backoff_delay(attempts),
            }
        )
        try:
            self._save(updated)
        except RedisError as exc:
            raise DeadLetterQueueError(f"dlq write failed: {exc}") from exc
        incr_metric("dlq.retry.failed", exhausted=exhausted)
        log_event(
            "dlq_retry_failed",
            level=logging.WARNING,
            item_id=item_id,
            event_type=item.event_type,
            attempts=attempts,
            exhausted=exhausted,
            error=error,
        )
        return updated

    def remove(self, item_id: str) -> bool:
        try:
            removed = self._redis.hdel(self._key, item_id)
        except RedisError as exc:
            raise DeadLetterQueueError(f"dlq delete failed: {exc}") from exc
        return bool(removed)

    def clear(self) -> int:
        removed = 0
        for item in self.list_items():
            if self.remove(item.id):
                removed += 1
        return removed

    def purge_expired(self, now: datetime | None = None) -> int:
        cutoff = (now or _now_utc()) - timedelta(seconds=self._retention_seconds)
        purged = 0
        for item in self.list_items():
            if item.first_failed_at < cutoff and self.remove(item.id):
                purged += 1
        if purged:
            incr_metric("dlq.purged", value=purged)
            log_event("dlq_items_purged", purged=purged)
        return purged

    def stats(self) -> DeadLetterStats:
        items = self.list_items()
        by_event_type = Counter(item.event_type for item in items)
        oldest = min((item.first_failed_at for item in items), default=None)
        return DeadLetterStats(
            count=len(items),
            by_event_type=dict(by_event_type),
            max_retries_reached=sum(1 for item in items if item.attempts >= self.max_retries),
            oldest_failed_at=oldest,
        )
