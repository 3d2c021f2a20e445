"""Canonical in-memory fleet state.

This is the only component allowed to mutate device state. Channel updates
(after the dedup gate), liveness resets and synthetic telemetry all go
through :meth:`FleetStateStore.apply_update`.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from binfleet.ingestion.normalize import clamp_percent
from binfleet.models.device import Device, DeviceStatus
from binfleet.models.stats import FleetStats, compute_stats
from binfleet.state.events import NormalizedUpdate, UpdateSource
from binfleet.state.policy import derive_status

_logger = logging.getLogger(__name__)

_MUTABLE_FIELDS = frozenset({"fill_level", "battery_level", "status"})
_UNSET: Any = object()

StoreListener = Callable[[NormalizedUpdate], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FleetSnapshot(BaseModel):
    """Immutable view of the fleet at one revision."""

    model_config = ConfigDict(frozen=True)

    devices: tuple[Device, ...]
    stats: FleetStats
    revision: int
    taken_at: datetime

    def device(self, device_id: int) -> Device | None:
        for device in self.devices:
            if device.id == device_id:
                return device
        return None


class FleetStateStore:
    """Device table plus derived statistics.

    Every mutation runs read-modify-write and the stats recompute under one
    lock, so concurrent writers never observe each other half-way.
    Listeners are called after the lock is released.
    """

    def __init__(
        self,
        devices: Iterable[Device],
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._devices: dict[int, Device] = {device.id: device for device in devices}
        self._stats = compute_stats(self._devices.values())
        self._revision = 0
        self._listeners: list[StoreListener] = []

    @property
    def revision(self) -> int:
        """Number of mutations applied so far."""
        return self._revision

    def add_listener(self, listener: StoreListener) -> Callable[[], None]:
        """Call *listener* with the resulting state after each applied mutation."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def apply_update(
        self,
        device_id: int,
        fields: Mapping[str, Any],
        *,
        source: UpdateSource = UpdateSource.MANUAL,
        timestamp: float | None = None,
        if_last_updated: datetime | None = _UNSET,
    ) -> Device | None:
        """Apply *fields* to one device and recompute fleet stats.

        Parameters
        ----------
        fields
            Any of ``fill_level``, ``battery_level``, ``status``. Levels are
            clamped to ``[0, 100]``. When ``status`` is absent it is derived
            from the new fill level; when neither is given it is kept.
        source
            Who produced the mutation; forwarded to listeners.
        timestamp
            Source timestamp forwarded to listeners (defaults to now).
        if_last_updated
            Compare-and-set guard: skip the mutation unless the device's
            ``last_updated`` still equals this value.

        Returns
        -------
        Device or None
            The new device state, or ``None`` when the device is unknown or
            the guard did not match.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported device fields: {sorted(unknown)}")

        with self._lock:
            current = self._devices.get(device_id)
            if current is None:
                updated = None
            elif if_last_updated is not _UNSET and current.last_updated != if_last_updated:
                updated = None
            else:
                now = self._clock()
                changes: dict[str, Any] = {"last_updated": now}

                fill = fields.get("fill_level")
                if fill is not None:
                    changes["fill_level"] = clamp_percent(fill)
                battery = fields.get("battery_level")
                if battery is not None:
                    changes["battery_level"] = clamp_percent(battery)

                status = fields.get("status")
                if status is not None:
                    changes["status"] = DeviceStatus(status)
                elif "fill_level" in changes:
                    changes["status"] = derive_status(changes["fill_level"])

                updated = current.model_copy(update=changes)
                self._devices[device_id] = updated
                # Wholesale recount; never patch counters incrementally.
                self._stats = compute_stats(self._devices.values())
                self._revision += 1

        if updated is None:
            if current is None:
                _logger.debug("Ignoring update for unknown device=%s source=%s", device_id, source)
            return None

        self._emit(
            NormalizedUpdate(
                device_id=updated.id,
                fill_level=updated.fill_level,
                battery_level=updated.battery_level,
                status=updated.status,
                timestamp=timestamp if timestamp is not None else now.timestamp(),
                source=source,
                observed_at=now,
            )
        )
        return updated

    def _emit(self, update: NormalizedUpdate) -> None:
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception:
                _logger.warning("State listener failed for device=%s", update.device_id, exc_info=True)

    def get(self, device_id: int) -> Device | None:
        with self._lock:
            return self._devices.get(device_id)

    def device_ids(self) -> list[int]:
        with self._lock:
            return list(self._devices)

    def stats(self) -> FleetStats:
        with self._lock:
            return self._stats

    def snapshot(self) -> FleetSnapshot:
        """Consistent copy of devices, stats and revision."""
        with self._lock:
            return FleetSnapshot(
                devices=tuple(self._devices.values()),
                stats=self._stats,
                revision=self._revision,
                taken_at=self._clock(),
            )
