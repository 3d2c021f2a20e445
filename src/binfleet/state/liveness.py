"""Liveness monitoring for the sensor-backed device."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from binfleet.models.device import DeviceStatus
from binfleet.state.events import UpdateSource
from binfleet.state.store import FleetStateStore

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class LivenessMonitor:
    """Resets a silent sensor instead of showing its last reading forever.

    The device starts out not live. The update pipeline calls
    :meth:`mark_live` whenever a channel update lands for it. A check that
    finds it live but silent for longer than ``timeout`` seconds forces
    ``fill_level=0, status=normal`` once and marks it not live; further
    late checks are no-ops until the device reports again.
    """

    def __init__(
        self,
        store: FleetStateStore,
        device_id: int,
        *,
        timeout: float = 120.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._device_id = device_id
        self._timeout = timeout
        self._clock = clock
        self._live = False
        self._last_reset: datetime | None = None

    @property
    def device_id(self) -> int:
        return self._device_id

    @property
    def is_live(self) -> bool:
        return self._live

    @property
    def last_reset(self) -> datetime | None:
        """When the device was last forced to its idle default."""
        return self._last_reset

    def mark_live(self) -> None:
        if not self._live:
            _logger.info("Device %s is reporting", self._device_id)
        self._live = True

    def check(self, now: datetime | None = None) -> bool:
        """Evaluate the timeout; returns True when the device was reset."""
        if not self._live:
            return False
        device = self._store.get(self._device_id)
        if device is None or device.last_updated is None:
            return False

        now = now or self._clock()
        silence = (now - device.last_updated).total_seconds()
        if silence <= self._timeout:
            return False

        reset = self._store.apply_update(
            self._device_id,
            {"fill_level": 0.0, "status": DeviceStatus.NORMAL},
            source=UpdateSource.LIVENESS,
            if_last_updated=device.last_updated,
        )
        if reset is None:
            # A fresh report landed between the read and the reset.
            return False

        self._live = False
        self._last_reset = now
        _logger.warning(
            "Device %s silent for %.0fs (timeout %.0fs); reset to idle",
            self._device_id,
            silence,
            self._timeout,
        )
        return True
