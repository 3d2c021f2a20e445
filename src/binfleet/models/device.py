"""Receptacle (device) model."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field, field_validator

from binfleet.ingestion.normalize import clamp_percent
from binfleet.models._base import FleetBaseModel


class DeviceStatus(StrEnum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    SERVICING = "servicing"


class DeviceCategory(StrEnum):
    GENERAL = "general"
    RECYCLABLE = "recyclable"
    ORGANIC = "organic"


class Location(FleetBaseModel):
    """Where a receptacle stands."""

    lat: float
    lng: float
    address: str = ""


class Device(FleetBaseModel):
    """Current state of one waste receptacle.

    Parameters
    ----------
    id : int
        Device identifier.
    location : Location
        Geolocation and address label.
    fill_level : float
        Fill level percentage, clamped to ``[0, 100]``.
    capacity : int
        Nominal capacity in litres.
    battery_level : float
        Battery percentage, clamped to ``[0, 100]``.
    status : DeviceStatus
        Derived from fill level unless an update supplied its own.
    category : DeviceCategory
        Waste stream the receptacle collects.
    last_updated : datetime or None
        When the state store last applied a mutation to this device.
    """

    id: int
    location: Location
    fill_level: float = 0.0
    capacity: int = 100
    battery_level: float = 100.0
    status: DeviceStatus = DeviceStatus.NORMAL
    category: DeviceCategory = DeviceCategory.GENERAL
    last_updated: datetime | None = Field(default=None)

    @field_validator("fill_level", "battery_level")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return clamp_percent(value)
