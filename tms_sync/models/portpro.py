from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _PortProModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, coerce_numbers_to_str=True)


class PortProAddress(_PortProModel):
    address1: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    country: str | None = None


class PortProLocation(_PortProModel):
    company_name: str | None = None
    address: PortProAddress | str | None = None
    full_address: str | None = Field(default=None, alias="fullAddress")


class PortProParty(_PortProModel):
    company_name: str | None = None
    email: str | None = None
    phone: str | None = None


class PickupWindow(_PortProModel):
    pickup_from_time: str | None = Field(default=None, alias="pickupFromTime")
    pickup_to_time: str | None = Field(default=None, alias="pickupToTime")


class DeliveryWindow(_PortProModel):
    delivery_from_time: str | None = Field(default=None, alias="deliveryFromTime")
    delivery_to_time: str | None = Field(default=None, alias="deliveryToTime")


class PortProLoad(_PortProModel):
    """A load as PortPro returns it from ``/loads`` and inside ``load#*`` events.

    Every field is optional: change events carry only the fields that
    moved, and list responses omit empty values.
    """

    load_id: str | None = Field(default=None, alias="_id")
    reference_number: str | None = None
    type_of_load: str | None = None
    status: str | None = None
    new_status: str | None = Field(default=None, alias="newStatus")
    container_no: str | None = Field(default=None, alias="containerNo")
    # Lookup fields arrive either as plain strings or as lookup objects.
    container_size: Any = Field(default=None, alias="containerSize")
    container_type: Any = Field(default=None, alias="containerType")
    chassis_no: str | None = Field(default=None, alias="chassisNo")
    seal_no: str | None = Field(default=None, alias="sealNo")
    weight: Any = None
    booking_no: str | None = Field(default=None, alias="bookingNo")
    ssl: Any = None
    commodity: Any = None
    # Parties and locations arrive as bare ids when PortPro does not populate them.
    caller: PortProParty | str | None = None
    shipper: PortProLocation | str | None = None
    consignee: PortProLocation | str | None = None
    terminal: PortProLocation | str | None = None
    pickup_location: PortProLocation | str | None = Field(default=None, alias="pickupLocation")
    delivery_location: PortProLocation | str | None = Field(default=None, alias="deliveryLocation")
    return_location: PortProLocation | str | None = Field(default=None, alias="returnLocation")
    pickup_times: list[PickupWindow] | None = Field(default=None, alias="pickupTimes")
    delivery_times: list[DeliveryWindow] | None = Field(default=None, alias="deliveryTimes")
    last_free_day: str | None = Field(default=None, alias="lastFreeDay")
    total_miles: Any = Field(default=None, alias="totalMiles")
    created_at: str | None = Field(default=None, alias="createdAt")
    updated_at: str | None = Field(default=None, alias="updatedAt")

    @property
    def first_delivery_from(self) -> str | None:
        if not self.delivery_times:
            return None
        return self.delivery_times[0].delivery_from_time

    @property
    def first_pickup_from(self) -> str | None:
        if not self.pickup_times:
            return None
        return self.pickup_times[0].pickup_from_time


class TenderData(_PortProModel):
    load_reference_number: str | None = Field(default=None, alias="loadReferenceNumber")
    tender_reference_number: str | None = Field(default=None, alias="tenderReferenceNumber")
    status: str | None = None
