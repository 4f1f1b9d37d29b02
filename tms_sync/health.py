from __future__ import annotations

from datetime import datetime, timedelta, timezone

from tms_sync.dead_letter import DeadLetterQueue
from tms_sync.models.health import (
    CleanupResponse,
    DeadLetterHealth,
    LastReconciliation,
    SyncHealthResponse,
    WebhookVolume,
)
from tms_sync.observability import log_event, metrics_snapshot
from tms_sync.store import LocalStore


DLQ_CRITICAL_COUNT = 50
DLQ_DEGRADED_COUNT = 20
MAX_RETRIES_CRITICAL_COUNT = 10
STALE_RECONCILIATION_HOURS = 8


def _parse_timestamp(value: object) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def collect_sync_health(
    store: LocalStore,
    dlq: DeadLetterQueue,
    *,
    now: datetime | None = None,
) -> SyncHealthResponse:
    now = now or datetime.now(timezone.utc)
    issues: list[str] = []

    total_webhooks = store.count_webhook_logs_since(now - timedelta(hours=24))
    stats = dlq.stats()
    last_run = store.latest_reconciliation_run() or {}

    health = "healthy"
    if stats.count > DLQ_CRITICAL_COUNT:
        health = "critical"
        issues.append(f"DLQ has {stats.count} failed webhooks")
    elif stats.count > DLQ_DEGRADED_COUNT:
        health = "degraded"
        issues.append(f"DLQ has {stats.count} failed webhooks")

    if stats.max_retries_reached > MAX_RETRIES_CRITICAL_COUNT:
        health = "critical"
        issues.append(f"{stats.max_retries_reached} webhooks reached max retries")

    last_started_at = _parse_timestamp(last_run.get("started_at"))
    if last_started_at is not None:
        hours_since = (now - last_started_at).total_seconds() / 3600
        if hours_since > STALE_RECONCILIATION_HOURS:
            if health != "critical":
                health = "degraded"
            issues.append(f"No reconciliation in {round(hours_since)} hours")

    if health != "healthy":
        log_event("sync_health_degraded", health=health, issues=issues)

    return SyncHealthResponse(
        webhooks_last_24h=WebhookVolume(
            total=total_webhooks,
            failed=stats.count,
            rate=round(stats.count / total_webhooks * 100) if total_webhooks else 0,
        ),
        dlq=DeadLetterHealth(count=stats.count, max_retries_reached=stats.max_retries_reached),
        last_reconciliation=LastReconciliation(
            started_at=last_started_at,
            status=last_run.get("status"),
            discrepancies=last_run.get("discrepancies") or 0,
        ),
        health=health,
        issues=issues,
        counters=metrics_snapshot(),
    )


def run_cleanup(
    store: LocalStore,
    dlq: DeadLetterQueue,
    *,
    webhook_log_retention_days: int = 30,
    reconciliation_run_retention_days: int = 90,
    now: datetime | None = None,
    request_id: str | None = None,
) -> CleanupResponse:
    now = now or datetime.now(timezone.utc)
    result = CleanupResponse(
        webhook_logs_deleted=store.delete_webhook_logs_before(now - timedelta(days=webhook_log_retention_days)),
        reconciliation_runs_deleted=store.delete_reconciliation_runs_before(
            now - timedelta(days=reconciliation_run_retention_days)
        ),
        dlq_items_purged=dlq.purge_expired(now),
    )
    log_event("cleanup_finished", request_id=request_id, **result.model_dump())
    return result
