"""Shipment record construction from the upstream load representation.

Both the ``load#created`` handler and the reconciliation sweep build rows
through :func:`build_shipment_fields` so a record looks the same no
matter which path created it.
"""

from __future__ import annotations

import random
import string
import time
from typing import Any

from tms_sync.domain.status_mapping import map_upstream_status
from tms_sync.models.portpro import PortProAddress, PortProLoad, PortProLocation, PortProParty


_BASE36 = string.digits + string.ascii_uppercase

# Fields the upstream system owns; reconciliation overwrites these.
MUTABLE_SHIPMENT_FIELDS = (
    "portpro_load_id",
    "container_number",
    "container_size",
    "container_type",
    "status",
    "origin",
    "destination",
    "return_location",
    "customer_name",
    "customer_email",
    "customer_phone",
    "booking_number",
    "shipping_line",
    "commodity",
    "eta",
    "pickup_time",
    "last_free_day",
    "weight",
    "seal_number",
    "chassis_number",
    "total_miles",
)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_tracking_number() -> str:
    suffix = "".join(random.choice(_BASE36) for _ in range(4))
    return f"NSL{_to_base36(int(time.time() * 1000))}{suffix}"


def extract_lookup_value(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        for key in ("name", "label", "value", "code"):
            if value.get(key):
                return str(value[key])
        return None
    return str(value)


def _as_number(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _format_address(address: PortProAddress) -> str | None:
    parts: list[str] = []
    if address.address1:
        parts.append(address.address1)
    if address.city:
        parts.append(address.city)
    if address.state:
        parts.append(f"{address.state} {address.zip}" if address.zip else address.state)
    if address.country and address.country != "US":
        parts.append(address.country)
    return ", ".join(parts) if parts else None


def format_location(location: PortProLocation | str | None) -> str | None:
    if not isinstance(location, PortProLocation):
        return None
    if location.full_address:
        return location.full_address
    parts: list[str] = []
    if location.company_name:
        parts.append(location.company_name)
    if isinstance(location.address, str) and location.address.strip():
        parts.append(location.address.strip())
    elif isinstance(location.address, PortProAddress):
        formatted = _format_address(location.address)
        if formatted:
            parts.append(formatted)
    return "\n".join(parts) if parts else None


def build_shipment_fields(load: PortProLoad) -> dict[str, Any]:
    caller = load.caller if isinstance(load.caller, PortProParty) else None
    return {
        "portpro_reference": load.reference_number,
        "portpro_load_id": load.load_id,
        "container_number": load.container_no or None,
        "container_size": extract_lookup_value(load.container_size),
        "container_type": extract_lookup_value(load.container_type),
        "status": map_upstream_status(load.status).value,
        "origin": (
            format_location(load.pickup_location)
            or format_location(load.shipper)
            or format_location(load.terminal)
        ),
        "destination": format_location(load.delivery_location) or format_location(load.consignee),
        "return_location": format_location(load.return_location),
        "customer_name": caller.company_name if caller else None,
        "customer_email": caller.email if caller else None,
        "customer_phone": caller.phone if caller else None,
        "booking_number": load.booking_no or None,
        "shipping_line": extract_lookup_value(load.ssl),
        "commodity": extract_lookup_value(load.commodity),
        "eta": load.first_delivery_from,
        "pickup_time": load.first_pickup_from,
        "last_free_day": load.last_free_day or None,
        "weight": _as_number(load.weight),
        "seal_number": load.seal_no or None,
        "chassis_number": load.chassis_no or None,
        "total_miles": _as_number(load.total_miles),
    }


def changed_fields(existing: dict[str, Any], desired: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in desired.items() if existing.get(key) != value}
