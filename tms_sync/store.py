from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from tms_sync.domain.errors import StoreError


SHIPMENTS_TABLE = "loads"
SHIPMENT_EVENTS_TABLE = "load_events"
WEBHOOK_LOGS_TABLE = "portpro_webhook_logs"
RECONCILIATION_RUNS_TABLE = "reconciliation_runs"
SUPER_ADMINS_TABLE = "super_admins"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_unique_violation(exc: Exception) -> bool:
    text = str(exc).lower()
    return "duplicate" in text or "unique" in text


class LocalStore:
    """Supabase-backed access to shipments, their event trail and sync bookkeeping.

    Every query failure surfaces as :class:`StoreError` so callers can tell
    store outages apart from benign "nothing to do" results.
    """

    def __init__(self, supabase_client: Any) -> None:
        self._db = supabase_client

    def _execute(self, operation: str, query: Any) -> list[dict[str, Any]]:
        try:
            result = query.execute()
        except Exception as exc:
            raise StoreError(f"{operation} failed: {exc}") from exc
        return result.data or []

    def get_shipment_by_reference(self, reference_number: str) -> dict[str, Any] | None:
        rows = self._execute(
            "shipment lookup",
            self._db.table(SHIPMENTS_TABLE)
            .select("*")
            .eq("portpro_reference", reference_number)
            .limit(1),
        )
        return rows[0] if rows else None

    def insert_shipment(self, fields: dict[str, Any]) -> tuple[dict[str, Any], bool]:
        """Insert a shipment, returning ``(row, created)``.

        A unique violation on ``portpro_reference`` means another writer got
        there first; the existing row is returned with ``created=False``.
        """
        now_iso = _now_iso()
        row = {**fields, "created_at": now_iso, "updated_at": now_iso}
        try:
            created = self._db.table(SHIPMENTS_TABLE).insert(row).execute()
        except Exception as exc:
            if not _is_unique_violation(exc):
                raise StoreError(f"shipment insert failed: {exc}") from exc
            existing = self.get_shipment_by_reference(fields["portpro_reference"])
            if existing is None:
                raise StoreError(f"shipment insert failed: {exc}") from exc
            return existing, False
        if not created.data:
            raise StoreError("shipment insert returned no row")
        return created.data[0], True

    def update_shipment(
        self,
        shipment_id: str,
        updates: dict[str, Any],
        *,
        expected_updated_at: str | None,
    ) -> dict[str, Any] | None:
        """Apply ``updates`` only if the row still carries ``expected_updated_at``.

        Returns the updated row, or ``None`` when the row moved on in the
        meantime.
        """
        query = self._db.table(SHIPMENTS_TABLE).update({**updates, "updated_at": _now_iso()}).eq("id", shipment_id)
        if expected_updated_at is None:
            query = query.is_("updated_at", "null")
        else:
            query = query.eq("updated_at", expected_updated_at)
        rows = self._execute("shipment update", query)
        return rows[0] if rows else None

    def append_shipment_event(
        self,
        *,
        load_id: str,
        status: str,
        description: str,
        source: str,
    ) -> dict[str, Any]:
        rows = self._execute(
            "shipment event insert",
            self._db.table(SHIPMENT_EVENTS_TABLE).insert(
                {
                    "load_id": load_id,
                    "status": status,
                    "description": description,
                    "portpro_event": True,
                    "source": source,
                    "created_at": _now_iso(),
                }
            ),
        )
        return rows[0] if rows else {}

    def log_webhook(
        self,
        *,
        event_type: str,
        reference_number: str | None,
        idempotency_key: str,
        payload: Any,
    ) -> None:
        self._execute(
            "webhook log insert",
            self._db.table(WEBHOOK_LOGS_TABLE).insert(
                {
                    "event_type": event_type,
                    "reference_number": reference_number,
                    "idempotency_key": idempotency_key,
                    "payload": payload,
                    "created_at": _now_iso(),
                }
            ),
        )

    def count_webhook_logs_since(self, since: datetime) -> int:
        rows = self._execute(
            "webhook log count",
            self._db.table(WEBHOOK_LOGS_TABLE).select("id").gte("created_at", since.isoformat()),
        )
        return len(rows)

    def delete_webhook_logs_before(self, cutoff: datetime) -> int:
        rows = self._execute(
            "webhook log cleanup",
            self._db.table(WEBHOOK_LOGS_TABLE).delete().lt("created_at", cutoff.isoformat()),
        )
        return len(rows)

    def start_reconciliation_run(self, *, triggered_by: str) -> dict[str, Any]:
        rows = self._execute(
            "reconciliation run insert",
            self._db.table(RECONCILIATION_RUNS_TABLE).insert(
                {
                    "status": "running",
                    "triggered_by": triggered_by,
                    "started_at": _now_iso(),
                    "records_scanned": 0,
                    "records_created": 0,
                    "records_updated": 0,
                    "discrepancies": 0,
                    "errors": 0,
                }
            ),
        )
        if not rows:
            raise StoreError("reconciliation run insert returned no row")
        return rows[0]

    def finish_reconciliation_run(self, run_id: str, summary: dict[str, Any]) -> None:
        self._execute(
            "reconciliation run update",
            self._db.table(RECONCILIATION_RUNS_TABLE).update(summary).eq("id", run_id),
        )

    def find_running_reconciliation(self, started_after: datetime) -> dict[str, Any] | None:
        rows = self._execute(
            "running reconciliation lookup",
            self._db.table(RECONCILIATION_RUNS_TABLE)
            .select("id, started_at, triggered_by")
            .eq("status", "running")
            .gte("started_at", started_after.isoformat())
            .limit(1),
        )
        return rows[0] if rows else None

    def latest_reconciliation_run(self) -> dict[str, Any] | None:
        rows = self._execute(
            "latest reconciliation lookup",
            self._db.table(RECONCILIATION_RUNS_TABLE)
            .select("*")
            .order("started_at", desc=True)
            .limit(1),
        )
        return rows[0] if rows else None

    def delete_reconciliation_runs_before(self, cutoff: datetime) -> int:
        rows = self._execute(
            "reconciliation run cleanup",
            self._db.table(RECONCILIATION_RUNS_TABLE).delete().lt("started_at", cutoff.isoformat()),
        )
        return len(rows)

    def get_super_admin(self, super_admin_id: str) -> dict[str, Any] | None:
        rows = self._execute(
            "super admin lookup",
            self._db.table(SUPER_ADMINS_TABLE).select("id, email").eq("id", super_admin_id),
        )
        return rows[0] if rows else None
