"""Seed fleet.

Devices are created once at engine start and never added or removed at
runtime. Device 1001 carries the physical sensor; every other receptacle
is simulated.
"""

from __future__ import annotations

from datetime import datetime

from binfleet.models.device import Device, DeviceCategory, Location
from binfleet.state.policy import derive_status

# (id, lat, lng, address, fill, battery, category)
_SEED: tuple[tuple[int, float, float, str, float, float, DeviceCategory], ...] = (
    (1001, 40.7128, -74.006, "Central Park East, New York", 0, 100, DeviceCategory.GENERAL),
    (1002, 40.7138, -74.013, "Madison Square, New York", 30, 92, DeviceCategory.RECYCLABLE),
    (1003, 40.7118, -74.009, "Bryant Park, New York", 88, 64, DeviceCategory.ORGANIC),
    (1004, 40.7148, -74.016, "Union Square, New York", 45, 78, DeviceCategory.GENERAL),
    (1005, 40.7158, -74.003, "Battery Park, New York", 92, 56, DeviceCategory.RECYCLABLE),
    (1006, 40.7168, -74.018, "Washington Square Park, New York", 15, 94, DeviceCategory.ORGANIC),
    (1007, 40.7108, -74.001, "High Line Park, New York", 68, 72, DeviceCategory.GENERAL),
    (1008, 40.7188, -74.011, "Times Square, New York", 50, 83, DeviceCategory.RECYCLABLE),
)


def default_fleet(now: datetime) -> list[Device]:
    """Build the eight-receptacle default fleet, stamped with *now*.

    Seed statuses are derived from fill level like every other write.
    """
    return [
        Device(
            id=device_id,
            location=Location(lat=lat, lng=lng, address=address),
            fill_level=fill,
            battery_level=battery,
            status=derive_status(fill),
            category=category,
            last_updated=now,
        )
        for device_id, lat, lng, address, fill, battery, category in _SEED
    ]
