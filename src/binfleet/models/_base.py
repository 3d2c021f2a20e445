"""Base model for binfleet records.

Every binfleet model inherits from :class:`FleetBaseModel` which provides:

* ``alias_generator=to_camel`` with ``populate_by_name`` so both the
  backing store's snake_case columns and camelCase device payloads
  validate into the same fields.
* A ``model_validator(mode="before")`` that strips sentinel values
  (``""``, ``"--"``, NaN) so the field default is used.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

# Sentinel strings meaning "not available".
_SENTINELS = frozenset({"", "--", "NaN", "nan", "null"})


class FleetBaseModel(BaseModel):
    """Frozen base model with sentinel cleaning."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _clean_sentinels(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        return FleetBaseModel._clean_dict(values)
