from __future__ import annotations

import logging
from typing import Any, Callable, Literal

from tms_sync.domain.events import (
    BaseEvent,
    CustomerCreatedEvent,
    DocumentAddedEvent,
    EquipmentUpdatedEvent,
    LoadCreatedEvent,
    LoadInfoUpdatedEvent,
    LoadStatusUpdatedEvent,
    TenderStatusChangedEvent,
    UnknownEvent,
)
from tms_sync.domain.records import changed_fields, extract_lookup_value
from tms_sync.domain.status_mapping import ShipmentStatus, describe_status, map_upstream_status
from tms_sync.mutations import create_shipment_from_load, update_shipment
from tms_sync.observability import incr_metric, log_event
from tms_sync.store import LocalStore


HandlerOutcome = Literal["created", "updated", "recorded", "noop", "ignored"]

_SOURCE = "webhook"

_FIELD_LABELS = {
    "eta": "ETA",
    "pickup_time": "pickup time",
    "container_number": "container number",
    "container_size": "container size",
    "chassis_number": "chassis number",
    "seal_number": "seal number",
}


def _describe_fields(prefix: str, fields: dict[str, Any]) -> str:
    labels = ", ".join(_FIELD_LABELS.get(key, key) for key in fields)
    return f"{prefix}: {labels}"


class EventHandlers:
    """Applies webhook events to the local store.

    Handlers raise only when the store itself fails. A missing shipment on
    an update event, or an event missing the fields it would change, is a
    valid state and ends as ``"noop"``; the reconciliation sweep creates
    shipments the webhook stream never announced.
    """

    def __init__(self, store: LocalStore) -> None:
        self._store = store
        self._handlers: dict[type[BaseEvent], Callable[[Any], HandlerOutcome]] = {
            LoadCreatedEvent: self.handle_load_created,
            LoadStatusUpdatedEvent: self.handle_status_updated,
            LoadInfoUpdatedEvent: self.handle_info_updated,
            EquipmentUpdatedEvent: self.handle_equipment_updated,
            DocumentAddedEvent: self.handle_document_added,
            TenderStatusChangedEvent: self.handle_tender_status_changed,
            CustomerCreatedEvent: self.handle_customer_created,
            UnknownEvent: self.handle_unknown,
        }

    def dispatch(self, event: BaseEvent, *, request_id: str | None = None) -> HandlerOutcome:
        handler = self._handlers.get(type(event), self.handle_unknown)
        outcome = handler(event)
        incr_metric("handlers.outcome", event_type=event.event_type, outcome=outcome)
        log_event(
            "webhook_event_applied",
            request_id=request_id,
            event_type=event.event_type,
            reference_number=event.reference,
            outcome=outcome,
        )
        return outcome

    def _find_shipment(self, event: BaseEvent) -> dict[str, Any] | None:
        reference = event.reference
        if not reference:
            return None
        shipment = self._store.get_shipment_by_reference(reference)
        if shipment is None:
            log_event("shipment_not_found", event_type=event.event_type, reference_number=reference)
        return shipment

    def handle_load_created(self, event: LoadCreatedEvent) -> HandlerOutcome:
        reference = event.reference
        if event.data is None or not reference:
            return "noop"
        if self._store.get_shipment_by_reference(reference) is not None:
            log_event("shipment_already_exists", reference_number=reference)
            return "noop"
        load = event.data
        if load.reference_number != reference:
            load = load.model_copy(update={"reference_number": reference})
        row, created = create_shipment_from_load(
            self._store,
            load,
            description=f"Load created in PortPro: {reference}",
            source=_SOURCE,
        )
        if not created:
            return "noop"
        log_event(
            "shipment_created",
            reference_number=reference,
            tracking_number=row.get("tracking_number"),
            status=row.get("status"),
        )
        return "created"

    def handle_status_updated(self, event: LoadStatusUpdatedEvent) -> HandlerOutcome:
        new_status = event.new_status
        if not new_status:
            return "noop"
        shipment = self._find_shipment(event)
        if shipment is None:
            return "noop"
        mapped = map_upstream_status(new_status)

        def _compute(current: dict[str, Any]) -> dict[str, Any]:
            return {} if current.get("status") == mapped.value else {"status": mapped.value}

        updated = update_shipment(self._store, shipment, _compute)
        if updated is None:
            return "noop"
        self._store.append_shipment_event(
            load_id=updated["id"],
            status=mapped.value,
            description=describe_status(mapped),
            source=_SOURCE,
        )
        return "updated"

    def _apply_field_updates(self, event: BaseEvent, fields: dict[str, Any], prefix: str) -> HandlerOutcome:
        if not fields:
            return "noop"
        shipment = self._find_shipment(event)
        if shipment is None:
            return "noop"
        applied: dict[str, Any] = {}

        def _compute(current: dict[str, Any]) -> dict[str, Any]:
            applied.clear()
            applied.update(changed_fields(current, fields))
            return dict(applied)

        updated = update_shipment(self._store, shipment, _compute)
        if updated is None:
            return "noop"
        self._store.append_shipment_event(
            load_id=updated["id"],
            status=updated.get("status") or ShipmentStatus.BOOKED.value,
            description=_describe_fields(prefix, applied),
            source=_SOURCE,
        )
        return "updated"

    def handle_info_updated(self, event: LoadInfoUpdatedEvent) -> HandlerOutcome:
        changes = event.changes
        if changes is None:
            return "noop"
        fields: dict[str, Any] = {}
        if changes.first_delivery_from:
            fields["eta"] = changes.first_delivery_from
        if changes.first_pickup_from:
            fields["pickup_time"] = changes.first_pickup_from
        if changes.container_no:
            fields["container_number"] = changes.container_no
        container_size = extract_lookup_value(changes.container_size)
        if container_size:
            fields["container_size"] = container_size
        return self._apply_field_updates(event, fields, "Load details updated")

    def handle_equipment_updated(self, event: EquipmentUpdatedEvent) -> HandlerOutcome:
        changes = event.changes
        if changes is None:
            return "noop"
        fields: dict[str, Any] = {}
        if changes.container_no:
            fields["container_number"] = changes.container_no
        if changes.chassis_no:
            fields["chassis_number"] = changes.chassis_no
        if changes.seal_no:
            fields["seal_number"] = changes.seal_no
        return self._apply_field_updates(event, fields, "Equipment updated")

    def handle_document_added(self, event: DocumentAddedEvent) -> HandlerOutcome:
        shipment = self._find_shipment(event)
        if shipment is None:
            return "noop"
        if event.document_type != "POD":
            self._record_document(shipment, event.document_type)
            return "recorded"

        delivered = ShipmentStatus.DELIVERED.value

        def _compute(current: dict[str, Any]) -> dict[str, Any]:
            return {} if current.get("status") == delivered else {"status": delivered}

        # Events are appended only once the status update has settled.
        updated = update_shipment(self._store, shipment, _compute)
        self._record_document(shipment, event.document_type)
        if updated is None:
            return "recorded"
        self._store.append_shipment_event(
            load_id=updated["id"],
            status=delivered,
            description="Proof of delivery received",
            source=_SOURCE,
        )
        return "updated"

    def _record_document(self, shipment: dict[str, Any], document_type: str) -> None:
        self._store.append_shipment_event(
            load_id=shipment["id"],
            status=shipment.get("status") or ShipmentStatus.BOOKED.value,
            description=f"{document_type} document added",
            source=_SOURCE,
        )

    def handle_tender_status_changed(self, event: TenderStatusChangedEvent) -> HandlerOutcome:
        shipment = self._find_shipment(event)
        if shipment is None:
            return "noop"
        tender_status = event.data.status if event.data is not None else None
        tender_reference = event.data.tender_reference_number if event.data is not None else None
        log_event(
            "tender_status_changed",
            reference_number=event.reference,
            tender_reference_number=tender_reference,
            tender_status=tender_status,
        )
        self._store.append_shipment_event(
            load_id=shipment["id"],
            status=shipment.get("status") or ShipmentStatus.BOOKED.value,
            description=f"Tender {tender_status.lower()}" if tender_status else "Tender updated",
            source=_SOURCE,
        )
        return "recorded"

    def handle_customer_created(self, event: CustomerCreatedEvent) -> HandlerOutcome:
        data = event.data or {}
        log_event(
            "portpro_customer_created",
            customer_id=data.get("_id"),
            company_name=data.get("company_name"),
        )
        return "ignored"

    def handle_unknown(self, event: BaseEvent) -> HandlerOutcome:
        incr_metric("webhook.events.unhandled", event_type=event.event_type)
        log_event(
            "webhook_unhandled_event_type",
            level=logging.INFO,
            event_type=event.event_type,
        )
        return "ignored"
