"""Synthetic telemetry for receptacles without a physical sensor.

Unsensored devices have no external source of truth, so they skip the dedup
gate and write straight to the state store with a bounded random walk.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Collection
from typing import Any

from binfleet._periodic import PeriodicTask, Sleep
from binfleet.ingestion.normalize import clamp_percent
from binfleet.models.device import Device, DeviceStatus
from binfleet.state.events import UpdateSource
from binfleet.state.policy import derive_status
from binfleet.state.store import FleetStateStore

_logger = logging.getLogger(__name__)


class SyntheticTelemetryGenerator:
    """Random-walk fill and battery levels for every non-excluded device.

    On each tick every eligible device changes with probability
    ``update_probability``. A change moves fill level by a random integer
    in ``fill_delta`` (inclusive), re-derives status, may turn into a
    collection event (``servicing`` with ``servicing_drop`` removed) and
    may drain one battery percent.
    """

    def __init__(
        self,
        store: FleetStateStore,
        *,
        exclude: Collection[int] = (),
        rng: random.Random | None = None,
        interval: float = 5.0,
        update_probability: float = 0.3,
        fill_delta: tuple[int, int] = (-2, 5),
        servicing_probability: float = 0.02,
        servicing_drop: float = 20.0,
        battery_drain_probability: float = 0.2,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._store = store
        self._exclude = frozenset(exclude)
        self._rng = rng or random.Random()
        self._update_probability = update_probability
        self._fill_delta = fill_delta
        self._servicing_probability = servicing_probability
        self._servicing_drop = servicing_drop
        self._battery_drain_probability = battery_drain_probability
        self._task = PeriodicTask("binfleet-synthetic", self.tick, interval=interval, sleep=sleep)

    @property
    def is_running(self) -> bool:
        return self._task.is_running

    async def start(self) -> None:
        await self._task.start()

    async def stop(self) -> None:
        await self._task.stop()

    def propose(self, device: Device) -> dict[str, Any]:
        """Draw the next state for *device* (does not apply it)."""
        low, high = self._fill_delta
        fill = clamp_percent(device.fill_level + self._rng.randint(low, high))
        status = derive_status(fill)

        if self._rng.random() < self._servicing_probability:
            status = DeviceStatus.SERVICING
            fill = max(0.0, fill - self._servicing_drop)

        battery = device.battery_level
        if self._rng.random() < self._battery_drain_probability:
            battery = max(0.0, battery - 1)

        return {"fill_level": fill, "status": status, "battery_level": battery}

    def tick(self) -> int:
        """Run one simulation step; returns the number of devices written."""
        written = 0
        for device_id in self._store.device_ids():
            if device_id in self._exclude:
                continue
            if self._rng.random() >= self._update_probability:
                continue
            device = self._store.get(device_id)
            if device is None:
                continue
            fields = self.propose(device)
            if self._store.apply_update(device_id, fields, source=UpdateSource.SYNTHETIC) is not None:
                written += 1
        if written:
            _logger.debug("Synthetic tick updated %d devices", written)
        return written
