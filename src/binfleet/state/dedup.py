"""Per-device dedup gate."""

from __future__ import annotations

import logging
import threading

from binfleet.state.events import NormalizedUpdate
from binfleet.state.policy import should_accept_update

_logger = logging.getLogger(__name__)


class Deduplicator:
    """Tracks the last applied source timestamp per device.

    ``accept`` is the only gate between the channels and the state store;
    push and poll both deliver the same rows, so every update must pass
    through it exactly once.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_applied: dict[int, float] = {}

    def accept(self, update: NormalizedUpdate) -> bool:
        """Record and return True if *update* is newer than the last applied one."""
        with self._lock:
            last = self._last_applied.get(update.device_id)
            if not should_accept_update(last_applied_ts=last, incoming_ts=update.timestamp):
                accepted = False
            else:
                self._last_applied[update.device_id] = update.timestamp
                accepted = True

        if not accepted:
            _logger.debug(
                "Dropping stale update device=%s ts=%s last_applied=%s source=%s",
                update.device_id,
                update.timestamp,
                last,
                update.source,
            )
        return accepted

    def last_applied(self, device_id: int) -> float | None:
        with self._lock:
            return self._last_applied.get(device_id)

    def reset(self) -> None:
        """Forget all records (a new subscription starts from scratch)."""
        with self._lock:
            self._last_applied.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_applied)
