"""Normalization helpers.

Centralizes defensive parsing of loosely typed telemetry values.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any

from binfleet._constants import PERCENT_MAX, PERCENT_MIN

# Values above this are epoch milliseconds rather than seconds.
_MS_THRESHOLD = 1e11


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or value == "--" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def clamp_percent(value: float) -> float:
    """Clamp a percentage into ``[0, 100]``; NaN and infinities are rejected."""
    result = float(value)
    if not math.isfinite(result):
        raise ValueError(f"percentage must be finite, got {value!r}")
    return max(PERCENT_MIN, min(PERCENT_MAX, result))


def normalize_timestamp_seconds(value: Any) -> float | None:
    """Normalize numeric timestamps to epoch seconds.

    - Empty/missing -> None
    - <= 0 -> None
    - Milliseconds (> 1e11) -> seconds
    """

    if value is None or value == "":
        return None
    try:
        ts = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(ts) or ts <= 0:
        return None
    if ts > _MS_THRESHOLD:
        ts /= 1000.0
    return ts


def parse_timestamp_seconds(value: Any) -> float | None:
    """Parse a row timestamp into epoch seconds.

    Accepts datetimes, ISO-8601 strings as written by Postgres
    (``2025-06-01T10:00:00.123456+00:00`` or with a trailing ``Z``) and
    numeric epoch seconds or milliseconds. Naive values are read as UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        numeric = normalize_timestamp_seconds(text)
        if numeric is not None:
            return numeric
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return normalize_timestamp_seconds(value)

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.timestamp()
