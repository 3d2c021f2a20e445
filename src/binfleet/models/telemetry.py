"""Telemetry table row model."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, Field, field_validator, model_validator

from binfleet.ingestion.normalize import parse_timestamp_seconds, safe_float, safe_int, safe_str
from binfleet.models._base import FleetBaseModel


class TelemetryRow(FleetBaseModel):
    """One row of the telemetry table, as returned by a poll or a push event.

    Every field is optional at this layer; required-field checks happen
    during normalization so a bad row can be reported instead of raising
    a validation error deep inside a channel.

    Parameters
    ----------
    bin_id : int or None
        Device identifier (``bin_id``, ``binId``, ``device_id``).
    fill_level : float or None
        Reported fill percentage.
    battery_level : float or None
        Reported battery percentage.
    status : str or None
        Status the device (or ingestion endpoint) attached, if any.
    created_at : float or None
        Insert time in epoch seconds.
    updated_at : float or None
        Last update time in epoch seconds.
    raw : dict
        The row as received.
    """

    bin_id: int | None = Field(
        default=None,
        validation_alias=AliasChoices("bin_id", "binId", "device_id", "deviceId"),
    )
    fill_level: float | None = Field(default=None, validation_alias=AliasChoices("fill_level", "fillLevel"))
    battery_level: float | None = Field(
        default=None,
        validation_alias=AliasChoices("battery_level", "batteryLevel"),
    )
    status: str | None = None
    created_at: float | None = Field(
        default=None,
        validation_alias=AliasChoices("created_at", "createdAt", "timestamp"),
    )
    updated_at: float | None = Field(default=None, validation_alias=AliasChoices("updated_at", "updatedAt"))
    raw: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _stash_raw(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        cleaned = FleetBaseModel._clean_dict(values)
        cleaned.setdefault("raw", dict(values))
        return cleaned

    @field_validator("bin_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> int | None:
        return safe_int(value)

    @field_validator("fill_level", "battery_level", mode="before")
    @classmethod
    def _coerce_percent(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> float | None:
        return parse_timestamp_seconds(value)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> str | None:
        text = safe_str(value)
        return text.strip().lower() if text else None
