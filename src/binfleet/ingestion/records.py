"""Telemetry row -> NormalizedUpdate conversion."""

from __future__ import annotations

import logging
import time
from typing import Any

from pydantic import ValidationError

from binfleet.exceptions import MalformedRecordError
from binfleet.ingestion.stream import ChangeKind
from binfleet.models.device import DeviceStatus
from binfleet.models.telemetry import TelemetryRow
from binfleet.state.events import NormalizedUpdate, UpdateSource
from binfleet.state.policy import derive_status

_logger = logging.getLogger(__name__)


def _parse_status(row: TelemetryRow) -> DeviceStatus | None:
    if row.status is None:
        return None
    try:
        return DeviceStatus(row.status)
    except ValueError:
        _logger.warning("Ignoring unknown status %r for device=%s", row.status, row.bin_id)
        return None


def build_report(device_id: int, fill_level: float, battery_level: float | None = None) -> dict[str, Any]:
    """Row a device would insert for one reading; battery defaults to full."""
    if not 0 <= fill_level <= 100:
        raise ValueError("fill_level must be between 0 and 100")
    return {
        "bin_id": device_id,
        "fill_level": fill_level,
        "battery_level": battery_level if battery_level is not None else 100,
        "status": derive_status(fill_level).value,
    }


def normalize_record(
    record: Any,
    *,
    source: UpdateSource,
    kind: ChangeKind = ChangeKind.INSERT,
    received_at: float | None = None,
) -> NormalizedUpdate:
    """Convert one telemetry row into a :class:`NormalizedUpdate`.

    INSERT rows are stamped with ``created_at``; UPDATE rows prefer
    ``updated_at``. Rows without either use *received_at* (defaults to now).

    Raises
    ------
    MalformedRecordError
        The row is not an object or lacks a device id or fill level.
    """
    if not isinstance(record, dict):
        raise MalformedRecordError("Telemetry record is not an object", record=record)
    try:
        row = TelemetryRow.model_validate(record)
    except ValidationError as exc:
        raise MalformedRecordError(f"Telemetry record failed validation: {exc}", record=record) from exc

    if row.bin_id is None:
        raise MalformedRecordError("Telemetry record has no device id", record=record)
    if row.fill_level is None:
        raise MalformedRecordError(f"Telemetry record for device {row.bin_id} has no fill level", record=record)

    if kind == ChangeKind.UPDATE:
        timestamp = row.updated_at if row.updated_at is not None else row.created_at
    else:
        timestamp = row.created_at
    if timestamp is None:
        timestamp = received_at if received_at is not None else time.time()

    return NormalizedUpdate(
        device_id=row.bin_id,
        fill_level=row.fill_level,
        battery_level=row.battery_level,
        status=_parse_status(row),
        timestamp=timestamp,
        source=source,
        raw=row.raw,
    )
