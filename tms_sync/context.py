from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import redis
from supabase import create_client

from tms_sync.config import Settings
from tms_sync.dead_letter import DeadLetterQueue
from tms_sync.domain.idempotency import IdempotencyStore
from tms_sync.handlers import EventHandlers
from tms_sync.notifier import AlertNotifier
from tms_sync.providers.portpro.client import PortProClient
from tms_sync.reconciliation import ReconciliationJob
from tms_sync.retry import RetryDriver
from tms_sync.store import LocalStore


@dataclass
class EngineContext:
    """Everything a request needs, built once per process from ``Settings``."""

    settings: Settings
    store: LocalStore
    idempotency: IdempotencyStore
    dlq: DeadLetterQueue
    client: PortProClient
    notifier: AlertNotifier
    handlers: EventHandlers
    reconciliation: ReconciliationJob
    retry_driver: RetryDriver
    redis_client: Any = None

    def close(self) -> None:
        self.client.close()
        self.notifier.close()
        if self.redis_client is not None:
            self.redis_client.close()


def assemble_context(
    settings: Settings,
    *,
    supabase_client: Any,
    redis_client: Any,
    client: PortProClient,
    notifier: AlertNotifier,
) -> EngineContext:
    """Wire components around already-constructed backends."""
    store = LocalStore(supabase_client)
    dlq = DeadLetterQueue(
        redis_client,
        max_retries=settings.dlq_max_retries,
        retention_seconds=settings.dlq_retention_seconds,
    )
    handlers = EventHandlers(store)
    idempotency = IdempotencyStore(
        redis_client,
        ttl_seconds=settings.dedup_ttl_seconds,
        claim_ttl_seconds=settings.dedup_claim_ttl_seconds,
    )
    return EngineContext(
        settings=settings,
        store=store,
        idempotency=idempotency,
        dlq=dlq,
        client=client,
        notifier=notifier,
        handlers=handlers,
        reconciliation=ReconciliationJob(
            store=store,
            client=client,
            notifier=notifier,
            page_size=settings.reconciliation_page_size,
            page_delay_seconds=settings.reconciliation_page_delay_seconds,
            time_budget_seconds=settings.reconciliation_time_budget_seconds,
            discrepancy_alert_threshold=settings.reconciliation_discrepancy_alert_threshold,
        ),
        retry_driver=RetryDriver(
            dlq=dlq,
            handlers=handlers,
            idempotency=idempotency,
            notifier=notifier,
            workers=settings.dlq_retry_workers,
            alert_threshold=settings.dlq_alert_threshold,
        ),
        redis_client=redis_client,
    )


def build_context(settings: Settings) -> EngineContext:
    return assemble_context(
        settings,
        supabase_client=create_client(settings.supabase_url, settings.supabase_service_role_key),
        redis_client=redis.from_url(settings.redis_url, decode_responses=True),
        client=PortProClient(
            access_token=settings.portpro_access_token,
            refresh_token=settings.portpro_refresh_token,
            base_url=settings.portpro_api_url,
            timeout_seconds=settings.portpro_request_timeout_seconds,
        ),
        notifier=AlertNotifier(settings.slack_webhook_url, timeout_seconds=settings.slack_timeout_seconds),
    )
