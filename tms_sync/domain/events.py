"""Webhook envelopes as a tagged union keyed by ``event_type``.

PortPro posts ``{event_type | eventType, data?, changedValues?,
reference_number?}``. :func:`parse_envelope` resolves the event type
(either spelling), picks the variant registered for it and validates the
payload against that variant's schema. Event types without a variant
become :class:`UnknownEvent`, which handlers treat as a no-op.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tms_sync.domain.errors import EventSchemaError
from tms_sync.models.portpro import PortProLoad, TenderData


def extract_event_type(payload: dict[str, Any]) -> str:
    return str(payload.get("event_type") or payload.get("eventType") or "unknown")


def _as_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


class BaseEvent(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, coerce_numbers_to_str=True)

    event_type: str
    reference_number: str | None = None

    @property
    def reference(self) -> str | None:
        return self.reference_number

    @property
    def occurred_at(self) -> str | None:
        return None


class _LoadEvent(BaseEvent):
    data: PortProLoad | None = None
    changed_values: PortProLoad | None = Field(default=None, alias="changedValues")

    @property
    def reference(self) -> str | None:
        if self.reference_number:
            return self.reference_number
        for source in (self.data, self.changed_values):
            if source is not None and source.reference_number:
                return source.reference_number
        return None

    @property
    def occurred_at(self) -> str | None:
        if self.data is None:
            return None
        return self.data.updated_at or self.data.created_at

    @property
    def changes(self) -> PortProLoad | None:
        return self.changed_values or self.data


class LoadCreatedEvent(_LoadEvent):
    event_type: Literal["load#created"]


class LoadStatusUpdatedEvent(_LoadEvent):
    event_type: Literal["load#status_updated"]

    @property
    def new_status(self) -> str | None:
        for source in (self.data, self.changed_values):
            if source is None:
                continue
            value = source.status or source.new_status
            if value:
                return value
        return None


class LoadInfoUpdatedEvent(_LoadEvent):
    event_type: Literal["load#info_updated", "load#dates_updated"]


class EquipmentUpdatedEvent(_LoadEvent):
    event_type: Literal["load#equipment_updated"]


class DocumentAddedEvent(BaseEvent):
    event_type: Literal["document#pod_added", "document#delivery_order_added"]
    data: dict[str, Any] | None = None

    @property
    def reference(self) -> str | None:
        return self.reference_number or _as_str((self.data or {}).get("reference_number"))

    @property
    def occurred_at(self) -> str | None:
        data = self.data or {}
        return _as_str(data.get("updatedAt") or data.get("createdAt"))

    @property
    def document_type(self) -> str:
        return "POD" if self.event_type == "document#pod_added" else "DO"


class TenderStatusChangedEvent(BaseEvent):
    event_type: Literal["tender#status_changed"]
    data: TenderData | None = None

    @property
    def reference(self) -> str | None:
        if self.data is not None and self.data.load_reference_number:
            return self.data.load_reference_number
        return self.reference_number

    @property
    def occurred_at(self) -> str | None:
        if self.data is None:
            return None
        extra = self.data.model_extra or {}
        return _as_str(extra.get("updatedAt") or extra.get("createdAt"))


class CustomerCreatedEvent(BaseEvent):
    event_type: Literal["customer#created"]
    data: dict[str, Any] | None = None


class UnknownEvent(BaseEvent):
    reference_number: Any = None
    data: Any = None

    @property
    def reference(self) -> str | None:
        if self.reference_number is None and isinstance(self.data, dict):
            return _as_str(self.data.get("reference_number"))
        return _as_str(self.reference_number)


WebhookEvent = (
    LoadCreatedEvent
    | LoadStatusUpdatedEvent
    | LoadInfoUpdatedEvent
    | EquipmentUpdatedEvent
    | DocumentAddedEvent
    | TenderStatusChangedEvent
    | CustomerCreatedEvent
    | UnknownEvent
)

EVENT_VARIANTS: dict[str, type[BaseEvent]] = {
    "load#created": LoadCreatedEvent,
    "load#status_updated": LoadStatusUpdatedEvent,
    "load#info_updated": LoadInfoUpdatedEvent,
    "load#dates_updated": LoadInfoUpdatedEvent,
    "load#equipment_updated": EquipmentUpdatedEvent,
    "document#pod_added": DocumentAddedEvent,
    "document#delivery_order_added": DocumentAddedEvent,
    "tender#status_changed": TenderStatusChangedEvent,
    "customer#created": CustomerCreatedEvent,
}


def parse_envelope(payload: dict[str, Any]) -> WebhookEvent:
    event_type = extract_event_type(payload)
    variant = EVENT_VARIANTS.get(event_type, UnknownEvent)
    normalized = dict(payload)
    normalized.pop("eventType", None)
    normalized["event_type"] = event_type
    try:
        return variant.model_validate(normalized)
    except ValidationError as exc:
        raise EventSchemaError(f"{event_type} payload failed validation: {exc.error_count()} error(s)") from exc
