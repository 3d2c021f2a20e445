"""The shared channel -> store pipeline.

Push, poll and manual injection all end the same way:

- normalize the raw row (malformed rows are logged and dropped)
- pass the update through the dedup gate (stale/duplicate rows are dropped)
- apply the accepted update to the state store
- tell the liveness hook that a device reported

Keeping this in one place guarantees every channel honours the same
ordering and duplicate rules.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from binfleet.exceptions import MalformedRecordError
from binfleet.ingestion.normalize import safe_int
from binfleet.ingestion.records import normalize_record
from binfleet.ingestion.stream import ChangeKind
from binfleet.state.dedup import Deduplicator
from binfleet.state.events import CHANNEL_SOURCES, NormalizedUpdate, UpdateSource
from binfleet.state.store import FleetStateStore

_logger = logging.getLogger(__name__)


class UpdateGate:
    """Dedup gate in front of the state store."""

    def __init__(
        self,
        dedup: Deduplicator,
        store: FleetStateStore,
        *,
        on_device_reported: Callable[[int], None] | None = None,
    ) -> None:
        self._dedup = dedup
        self._store = store
        self._on_device_reported = on_device_reported
        self.accepted = 0
        self.rejected = 0
        self.malformed = 0

    def submit(self, update: NormalizedUpdate) -> bool:
        """Apply *update* if it is newer than the last one for its device."""
        if update.source not in CHANNEL_SOURCES:
            raise ValueError(f"{update.source} updates bypass the dedup gate")

        if not self._dedup.accept(update):
            self.rejected += 1
            return False

        self.accepted += 1
        applied = self._store.apply_update(
            update.device_id,
            update.fields(),
            source=update.source,
            timestamp=update.timestamp,
        )
        if applied is not None and self._on_device_reported is not None:
            self._on_device_reported(update.device_id)
        return True

    def submit_record(
        self,
        record: Any,
        *,
        source: UpdateSource,
        kind: ChangeKind = ChangeKind.INSERT,
    ) -> bool:
        """Normalize and submit one raw row; malformed rows return False."""
        try:
            update = normalize_record(record, source=source, kind=kind)
        except MalformedRecordError as exc:
            self.malformed += 1
            device_hint = safe_int(record.get("bin_id")) if isinstance(record, dict) else None
            _logger.warning("Dropping malformed %s record (device=%s): %s", source, device_hint, exc)
            return False
        return self.submit(update)
