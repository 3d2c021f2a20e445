"""Deterministic state policy.

This module contains *no* payload parsing. It decides how a fill level maps
to a status and whether an update is newer than what has been applied.
"""

from __future__ import annotations

from binfleet._constants import CRITICAL_FILL_THRESHOLD, WARNING_FILL_THRESHOLD
from binfleet.models.device import DeviceStatus


def derive_status(fill_level: float) -> DeviceStatus:
    """Map a fill level to its status: <50 normal, <80 warning, else critical."""
    if fill_level < WARNING_FILL_THRESHOLD:
        return DeviceStatus.NORMAL
    if fill_level < CRITICAL_FILL_THRESHOLD:
        return DeviceStatus.WARNING
    return DeviceStatus.CRITICAL


def should_accept_update(*, last_applied_ts: float | None, incoming_ts: float) -> bool:
    """Accept only strictly newer timestamps.

    Ties reject so a redelivered record (same row seen by both push and
    poll) is a no-op.
    """
    if last_applied_ts is None:
        return True
    return incoming_ts > last_applied_ts
