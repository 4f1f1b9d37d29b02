"""Shipment mutation contract shared by webhook handlers and reconciliation."""

from __future__ import annotations

import logging
from typing import Any, Callable

from tms_sync.domain.errors import ConcurrentUpdateError
from tms_sync.domain.records import build_shipment_fields, generate_tracking_number
from tms_sync.models.portpro import PortProLoad
from tms_sync.observability import incr_metric, log_event
from tms_sync.store import LocalStore


MAX_OPTIMISTIC_ATTEMPTS = 3


def create_shipment_from_load(
    store: LocalStore,
    load: PortProLoad,
    *,
    description: str,
    source: str,
) -> tuple[dict[str, Any], bool]:
    """Create the shipment for ``load`` unless one already exists for its reference."""
    fields = build_shipment_fields(load)
    fields["tracking_number"] = generate_tracking_number()
    row, created = store.insert_shipment(fields)
    if created:
        store.append_shipment_event(
            load_id=row["id"],
            status=row["status"],
            description=description,
            source=source,
        )
        incr_metric("shipments.created", source=source)
    return row, created


def update_shipment(
    store: LocalStore,
    shipment: dict[str, Any],
    compute_updates: Callable[[dict[str, Any]], dict[str, Any]],
) -> dict[str, Any] | None:
    """Apply ``compute_updates(current_row)`` with an optimistic ``updated_at`` compare.

    When another writer changed the row first, the row is re-read and the
    updates recomputed against it. Returns the updated row, or ``None``
    when there was nothing to change or the row disappeared.
    """
    current: dict[str, Any] | None = shipment
    reference = shipment.get("portpro_reference")
    for attempt in range(1, MAX_OPTIMISTIC_ATTEMPTS + 1):
        if current is None:
            return None
        updates = compute_updates(current)
        if not updates:
            return None
        updated = store.update_shipment(
            current["id"],
            updates,
            expected_updated_at=current.get("updated_at"),
        )
        if updated is not None:
            return updated
        incr_metric("shipments.update_conflicts")
        log_event(
            "shipment_update_conflict",
            level=logging.WARNING,
            reference_number=reference,
            attempt=attempt,
        )
        current = store.get_shipment_by_reference(reference) if reference else None
    raise ConcurrentUpdateError(f"shipment {reference} kept changing during update")
