from __future__ import annotations

import logging
import re
import time
from enum import Enum
from typing import Any

from redis.exceptions import RedisError

from tms_sync.observability import incr_metric, log_event


DEDUP_PREFIX = "portpro:dedup:"
_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9:_-]")


def generate_idempotency_key(
    event_type: str,
    reference_number: str | None,
    occurred_at: str | None,
) -> str:
    ref = reference_number or "unknown"
    ts = occurred_at or ""
    return _UNSAFE_KEY_CHARS.sub("_", f"{event_type}:{ref}:{ts}")


class ClaimResult(str, Enum):
    CLAIMED = "claimed"
    DUPLICATE = "duplicate"
    UNAVAILABLE = "unavailable"


class IdempotencyStore:
    """Redis-backed record of events that already produced a business effect.

    ``claim`` is a single ``SET NX EX`` so two concurrent deliveries of the
    same event cannot both reach a handler. The claim lives for a short
    window while the handler runs; ``mark_processed`` then extends it to
    the full dedup TTL, and ``release`` drops it after a failure so the
    event can be applied again later.
    """

    def __init__(
        self,
        redis_client: Any,
        *,
        ttl_seconds: int,
        claim_ttl_seconds: int,
        prefix: str = DEDUP_PREFIX,
    ) -> None:
        self._redis = redis_client
        self._ttl_seconds = ttl_seconds
        self._claim_ttl_seconds = claim_ttl_seconds
        self._prefix = prefix

    def _key(self, idempotency_key: str) -> str:
        return f"{self._prefix}{idempotency_key}"

    def claim(self, idempotency_key: str) -> ClaimResult:
        try:
            acquired = self._redis.set(
                self._key(idempotency_key),
                "processing",
                nx=True,
                ex=self._claim_ttl_seconds,
            )
        except RedisError as exc:
            incr_metric("dedup.unavailable")
            log_event(
                "dedup_check_failed",
                level=logging.WARNING,
                idempotency_key=idempotency_key,
                error=str(exc),
            )
            return ClaimResult.UNAVAILABLE
        if acquired:
            return ClaimResult.CLAIMED
        incr_metric("dedup.duplicate_detected")
        return ClaimResult.DUPLICATE

    def mark_processed(self, idempotency_key: str) -> bool:
        try:
            self._redis.set(
                self._key(idempotency_key),
                str(int(time.time() * 1000)),
                ex=self._ttl_seconds,
            )
        except RedisError as exc:
            log_event(
                "dedup_mark_failed",
                level=logging.WARNING,
                idempotency_key=idempotency_key,
                error=str(exc),
            )
            return False
        return True

    def release(self, idempotency_key: str) -> bool:
        try:
            self._redis.delete(self._key(idempotency_key))
        except RedisError as exc:
            log_event(
                "dedup_release_failed",
                level=logging.WARNING,
                idempotency_key=idempotency_key,
                error=str(exc),
            )
            return False
        return True
