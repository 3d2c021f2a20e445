"""Data models for fleet telemetry."""

from binfleet.models._base import FleetBaseModel
from binfleet.models.device import Device, DeviceCategory, DeviceStatus, Location
from binfleet.models.stats import FleetStats, compute_stats
from binfleet.models.telemetry import TelemetryRow

__all__ = [
    "Device",
    "DeviceCategory",
    "DeviceStatus",
    "FleetBaseModel",
    "FleetStats",
    "Location",
    "TelemetryRow",
    "compute_stats",
]
