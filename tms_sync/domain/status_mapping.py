"""Translation of PortPro load statuses into the internal shipment status.

The table below is the only place upstream status vocabulary is
interpreted. Webhook handlers and the reconciliation sweep both call
:func:`map_upstream_status`, so the two paths always agree on the same
input.

==================  =================
PortPro status      Internal status
==================  =================
PENDING             booked
CUSTOMS HOLD        at_port
FREIGHT HOLD        at_port
AVAILABLE           at_port
DISPATCHED          in_transit
DROPPED             out_for_delivery
COMPLETED           delivered
BILLING             delivered
PARTIAL_PAID        delivered
FULL_PAID           delivered
(anything else)     booked
==================  =================

Unrecognized values fall back to ``booked``, never ``delivered``.
"""

from __future__ import annotations

from enum import Enum


class ShipmentStatus(str, Enum):
    BOOKED = "booked"
    AT_PORT = "at_port"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"


DEFAULT_STATUS = ShipmentStatus.BOOKED

UPSTREAM_STATUS_MAP: dict[str, ShipmentStatus] = {
    "PENDING": ShipmentStatus.BOOKED,
    "CUSTOMS HOLD": ShipmentStatus.AT_PORT,
    "FREIGHT HOLD": ShipmentStatus.AT_PORT,
    "AVAILABLE": ShipmentStatus.AT_PORT,
    "DISPATCHED": ShipmentStatus.IN_TRANSIT,
    "DROPPED": ShipmentStatus.OUT_FOR_DELIVERY,
    "COMPLETED": ShipmentStatus.DELIVERED,
    "BILLING": ShipmentStatus.DELIVERED,
    "PARTIAL PAID": ShipmentStatus.DELIVERED,
    "FULL PAID": ShipmentStatus.DELIVERED,
}

STATUS_DESCRIPTIONS: dict[ShipmentStatus, str] = {
    ShipmentStatus.BOOKED: "Load booked and confirmed",
    ShipmentStatus.AT_PORT: "Container at port",
    ShipmentStatus.IN_TRANSIT: "Container dispatched and in transit",
    ShipmentStatus.OUT_FOR_DELIVERY: "Container dropped for delivery",
    ShipmentStatus.DELIVERED: "Load completed",
}


def _normalize_key(value: str) -> str:
    return " ".join(str(value).replace("_", " ").split()).upper()


def map_upstream_status(value: str | None) -> ShipmentStatus:
    if not value:
        return DEFAULT_STATUS
    return UPSTREAM_STATUS_MAP.get(_normalize_key(value), DEFAULT_STATUS)


def describe_status(status: ShipmentStatus) -> str:
    return STATUS_DESCRIPTIONS[status]
