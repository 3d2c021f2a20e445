"""Normalized telemetry updates.

All producers (push, poll, manual injection) convert their inputs into
:class:`NormalizedUpdate` before it reaches the dedup gate. The state store
also emits them to subscribers after every applied mutation.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from binfleet.models.device import DeviceStatus


class UpdateSource(StrEnum):
    PUSH = "push"
    POLL = "poll"
    MANUAL = "manual"
    LIVENESS = "liveness"
    SYNTHETIC = "synthetic"


#: Sources that represent an external report for a device. Only these pass
#: through the dedup gate and count as a sign of life.
CHANNEL_SOURCES: frozenset[UpdateSource] = frozenset({UpdateSource.PUSH, UpdateSource.POLL, UpdateSource.MANUAL})


class NormalizedUpdate(BaseModel):
    """A channel-agnostic telemetry record."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    device_id: int
    fill_level: float
    battery_level: float | None = None
    status: DeviceStatus | None = None
    timestamp: float = Field(
        default_factory=time.time,
        description="Source timestamp (epoch seconds); receipt time when the record has none.",
    )
    source: UpdateSource = UpdateSource.MANUAL
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    raw: dict[str, Any] = Field(default_factory=dict, description="Original record (as received)")

    @field_validator("observed_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def fields(self) -> dict[str, Any]:
        """Mutable device fields carried by this update, for the state store."""
        patch: dict[str, Any] = {"fill_level": self.fill_level}
        if self.battery_level is not None:
            patch["battery_level"] = self.battery_level
        if self.status is not None:
            patch["status"] = self.status
        return patch
