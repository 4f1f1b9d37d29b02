"""Periodic full sweep of PortPro loads against the local shipment table.

The sweep catches webhooks that never arrived and corrects drift. Remote
records are fetched page by page; each one is created locally when
missing or has its upstream-owned fields overwritten when they differ.
A status mismatch counts as a discrepancy.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from tms_sync.domain.errors import ReconciliationInProgressError, UpstreamError
from tms_sync.domain.records import MUTABLE_SHIPMENT_FIELDS, build_shipment_fields, changed_fields
from tms_sync.domain.status_mapping import ShipmentStatus, describe_status
from tms_sync.models.portpro import PortProLoad
from tms_sync.models.reconciliation import ReconciliationRunSummary
from tms_sync.mutations import create_shipment_from_load, update_shipment
from tms_sync.notifier import AlertNotifier
from tms_sync.observability import incr_metric, log_event
from tms_sync.providers.portpro.client import PortProClient
from tms_sync.store import LocalStore


_SOURCE = "reconciliation"


class _BudgetExceeded(Exception):
    pass


class ReconciliationJob:
    def __init__(
        self,
        *,
        store: LocalStore,
        client: PortProClient,
        notifier: AlertNotifier,
        page_size: int = 100,
        page_delay_seconds: float = 0.5,
        time_budget_seconds: float = 300.0,
        discrepancy_alert_threshold: int = 20,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._client = client
        self._notifier = notifier
        self._page_size = page_size
        self._page_delay_seconds = page_delay_seconds
        self._time_budget_seconds = time_budget_seconds
        self._discrepancy_alert_threshold = discrepancy_alert_threshold
        self._clock = clock
        self._sleep = sleep

    def _ensure_not_running(self) -> None:
        window = timedelta(seconds=self._time_budget_seconds * 2)
        running = self._store.find_running_reconciliation(datetime.now(timezone.utc) - window)
        if running is not None:
            raise ReconciliationInProgressError(
                f"reconciliation run {running.get('id')} started at {running.get('started_at')} is still running"
            )

    def run(self, *, triggered_by: str = "scheduler", request_id: str | None = None) -> ReconciliationRunSummary:
        """Run one sweep and persist its summary.

        Raises ``ReconciliationInProgressError`` when a recent run is still
        marked running. Any other failure that ends the sweep early is
        recorded as a failed run, alerted on, then re-raised.
        """
        self._ensure_not_running()
        run = self._store.start_reconciliation_run(triggered_by=triggered_by)
        started_at = datetime.now(timezone.utc)
        deadline = self._clock() + self._time_budget_seconds
        counts = {
            "records_scanned": 0,
            "records_created": 0,
            "records_updated": 0,
            "discrepancies": 0,
            "errors": 0,
        }
        log_event("reconciliation_started", request_id=request_id, run_id=run.get("id"), triggered_by=triggered_by)

        def _check_budget() -> None:
            if self._clock() >= deadline:
                raise _BudgetExceeded()

        status = "completed"
        error: str | None = None
        failure: Exception | None = None
        try:
            for page in self._client.iter_load_pages(
                page_size=self._page_size,
                page_delay_seconds=self._page_delay_seconds,
                sleep=self._sleep,
            ):
                for raw in page:
                    _check_budget()
                    counts["records_scanned"] += 1
                    self._reconcile_record(raw, counts, request_id=request_id)
                _check_budget()
        except _BudgetExceeded:
            status = "timed_out"
            log_event(
                "reconciliation_timed_out",
                level=logging.WARNING,
                request_id=request_id,
                run_id=run.get("id"),
                records_scanned=counts["records_scanned"],
            )
        except UpstreamError as exc:
            status = "failed"
            error = str(exc)
            failure = exc
        except Exception as exc:
            status = "failed"
            error = f"{type(exc).__name__}: {exc}"
            failure = exc

        completed_at = datetime.now(timezone.utc)
        summary = ReconciliationRunSummary(
            id=str(run["id"]) if run.get("id") is not None else None,
            status=status,
            triggered_by=triggered_by,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=int((completed_at - started_at).total_seconds() * 1000),
            error=error,
            **counts,
        )
        self._store.finish_reconciliation_run(
            run["id"],
            summary.model_dump(mode="json", exclude={"id", "triggered_by", "started_at"}),
        )
        incr_metric(f"reconciliation.runs.{status}")
        log_event(
            "reconciliation_finished",
            level=logging.ERROR if status == "failed" else logging.INFO,
            request_id=request_id,
            **summary.model_dump(mode="json"),
        )

        if failure is not None:
            self._notifier.send("reconciliation_drift", {"error": error, "run_id": summary.id})
            raise failure
        if summary.discrepancies > self._discrepancy_alert_threshold:
            self._notifier.send(
                "reconciliation_drift",
                {
                    "discrepancies": summary.discrepancies,
                    "records_scanned": summary.records_scanned,
                    "run_id": summary.id,
                },
            )
        return summary

    def _reconcile_record(self, raw: dict[str, Any], counts: dict[str, int], *, request_id: str | None) -> None:
        reference = raw.get("reference_number")
        try:
            load = PortProLoad.model_validate(raw)
            if not load.container_no or not load.reference_number:
                return
            reference = load.reference_number
            existing = self._store.get_shipment_by_reference(reference)
            if existing is None:
                _, created = create_shipment_from_load(
                    self._store,
                    load,
                    description="Load synced from PortPro",
                    source=_SOURCE,
                )
                if created:
                    counts["records_created"] += 1
                return
            self._sync_existing(existing, load, counts)
        except Exception as exc:
            counts["errors"] += 1
            incr_metric("reconciliation.record_errors")
            log_event(
                "reconciliation_record_failed",
                level=logging.ERROR,
                request_id=request_id,
                reference_number=reference,
                error=str(exc),
            )

    def _sync_existing(self, existing: dict[str, Any], load: PortProLoad, counts: dict[str, int]) -> None:
        fields = build_shipment_fields(load)
        desired = {key: fields[key] for key in MUTABLE_SHIPMENT_FIELDS}
        remote_status = desired["status"]
        if existing.get("status") != remote_status:
            counts["discrepancies"] += 1
            log_event(
                "reconciliation_status_mismatch",
                level=logging.WARNING,
                reference_number=load.reference_number,
                local_status=existing.get("status"),
                remote_status=remote_status,
            )
        previous_status = existing.get("status")
        updated = update_shipment(self._store, existing, lambda current: changed_fields(current, desired))
        if updated is None:
            return
        counts["records_updated"] += 1
        if previous_status != remote_status:
            self._store.append_shipment_event(
                load_id=updated["id"],
                status=remote_status,
                description=describe_status(ShipmentStatus(remote_status)),
                source=_SOURCE,
            )
