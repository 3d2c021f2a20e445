"""Derived fleet statistics."""

from __future__ import annotations

import math
from collections.abc import Iterable

from binfleet.models._base import FleetBaseModel
from binfleet.models.device import Device, DeviceStatus

_CRITICAL_PENALTY = 50.0
_HIGH_FILL_AVERAGE = 70.0
_HIGH_FILL_PENALTY = 20.0


class FleetStats(FleetBaseModel):
    """Fleet-wide aggregates, always recomputed from the full device table."""

    total_bins: int = 0
    critical_bins: int = 0
    avg_fill_level: float = 0.0
    efficiency_score: int = 100


def compute_stats(devices: Iterable[Device]) -> FleetStats:
    """Recount every aggregate from scratch.

    The efficiency score starts at 100, loses up to 50 points in
    proportion to the share of critical receptacles and another 20 when
    the average fill level exceeds 70%.
    """
    total = 0
    critical = 0
    fill_sum = 0.0
    for device in devices:
        total += 1
        fill_sum += device.fill_level
        if device.status == DeviceStatus.CRITICAL:
            critical += 1

    if total == 0:
        return FleetStats()

    avg_fill = fill_sum / total
    score = 100.0 - (critical / total) * _CRITICAL_PENALTY
    if avg_fill > _HIGH_FILL_AVERAGE:
        score -= _HIGH_FILL_PENALTY
    return FleetStats(
        total_bins=total,
        critical_bins=critical,
        avg_fill_level=avg_fill,
        efficiency_score=max(0, min(100, math.floor(score))),
    )
