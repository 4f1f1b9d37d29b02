from __future__ import annotations

import json
import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone

from tms_sync.dead_letter import DeadLetterQueue
from tms_sync.domain.errors import EventSchemaError
from tms_sync.domain.events import BaseEvent, parse_envelope
from tms_sync.domain.idempotency import IdempotencyStore, generate_idempotency_key
from tms_sync.handlers import EventHandlers
from tms_sync.models.dead_letters import DeadLetterItem, DeadLetterRetryResponse, RetrySweepResponse
from tms_sync.notifier import AlertNotifier
from tms_sync.observability import incr_metric, log_event


def parse_raw_payload(raw_payload: str) -> BaseEvent:
    try:
        payload = json.loads(raw_payload)
    except ValueError as exc:
        raise EventSchemaError(f"stored payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise EventSchemaError("stored payload is not a JSON object")
    return parse_envelope(payload)


class RetryDriver:
    """Re-runs dead-lettered events through the webhook handler registry.

    A successful replay records the event's idempotency key, so a later
    redelivery of the same event is treated as a duplicate.
    """

    def __init__(
        self,
        *,
        dlq: DeadLetterQueue,
        handlers: EventHandlers,
        idempotency: IdempotencyStore,
        notifier: AlertNotifier,
        workers: int = 4,
        alert_threshold: int = 50,
    ) -> None:
        self._dlq = dlq
        self._handlers = handlers
        self._idempotency = idempotency
        self._notifier = notifier
        self._workers = max(workers, 1)
        self._alert_threshold = alert_threshold

    def _attempt(self, item: DeadLetterItem, *, now: datetime, request_id: str | None) -> bool:
        try:
            event = parse_raw_payload(item.raw_payload)
            self._handlers.dispatch(event, request_id=request_id)
        except Exception as exc:
            self._dlq.record_failure(item.id, str(exc), now=now)
            return False
        self._idempotency.mark_processed(
            generate_idempotency_key(event.event_type, event.reference, event.occurred_at)
        )
        self._dlq.record_success(item.id)
        return True

    def retry_one(self, item_id: str, *, request_id: str | None = None) -> DeadLetterRetryResponse | None:
        """Retry a single item now, ignoring its schedule. ``None`` when it does not exist."""
        item = self._dlq.get(item_id)
        if item is None:
            return None
        now = datetime.now(timezone.utc)
        if self._attempt(item, now=now, request_id=request_id):
            log_event("dlq_manual_retry_succeeded", request_id=request_id, item_id=item_id)
            return DeadLetterRetryResponse(success=True, id=item_id, attempts=item.attempts)
        failed = self._dlq.get(item_id)
        return DeadLetterRetryResponse(
            success=False,
            id=item_id,
            attempts=failed.attempts if failed else item.attempts,
            error=failed.error if failed else None,
        )

    def run_sweep(self, *, now: datetime | None = None, request_id: str | None = None) -> RetrySweepResponse:
        now = now or datetime.now(timezone.utc)
        purged = self._dlq.purge_expired(now)

        stats = self._dlq.stats()
        overflow_alerted = False
        if stats.count >= self._alert_threshold:
            overflow_alerted = self._notifier.send(
                "dlq_overflow",
                {
                    "count": stats.count,
                    "max_retries_reached": stats.max_retries_reached,
                    "by_event_type": stats.by_event_type,
                },
            )

        ready = self._dlq.ready_for_retry(now)
        succeeded = 0
        failed = 0
        if ready:
            with ThreadPoolExecutor(max_workers=self._workers) as executor:
                pending: set[Future[bool]] = set()
                idx = 0
                while idx < len(ready) or pending:
                    while idx < len(ready) and len(pending) < self._workers * 2:
                        pending.add(executor.submit(self._attempt, ready[idx], now=now, request_id=request_id))
                        idx += 1
                    done, pending = wait(pending, return_when=FIRST_COMPLETED)
                    for future in done:
                        if future.result():
                            succeeded += 1
                        else:
                            failed += 1

        incr_metric("dlq.sweeps")
        log_event(
            "dlq_sweep_finished",
            level=logging.WARNING if failed else logging.INFO,
            request_id=request_id,
            retried=len(ready),
            succeeded=succeeded,
            failed=failed,
            purged=purged,
            overflow_alerted=overflow_alerted,
        )
        return RetrySweepResponse(
            retried=len(ready),
            succeeded=succeeded,
            failed=failed,
            purged=purged,
            overflow_alerted=overflow_alerted,
        )
