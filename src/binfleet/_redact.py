"""Redaction for debug logs.

The backing store's anon key travels as an ``apikey`` header, a bearer
``authorization`` header and, for the Realtime websocket, a query parameter.
Nothing that reaches a log record should carry it.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

REDACTED = "<redacted>"

_SECRET_KEYS: frozenset[str] = frozenset(
    {
        "apikey",
        "api_key",
        "authorization",
        "access_token",
        "password",
        "token",
        "cookie",
    }
)

_SECRET_QUERY = re.compile(r"(?i)\b(apikey|access_token|token)=[^&\s]+")

_MAX_DEPTH = 20


def redact_url(url: str) -> str:
    """Mask credentials passed as query parameters."""
    return _SECRET_QUERY.sub(lambda m: f"{m.group(1)}={REDACTED}", url)


def _is_secret(key: Any) -> bool:
    return str(key).lower() in _SECRET_KEYS


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Copy *value* with secret-bearing keys masked and long strings cut."""
    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    def _nested(item: Any) -> Any:
        return redact_for_log(item, max_string=max_string, _depth=_depth + 1)

    if isinstance(value, Mapping):
        return {str(key): REDACTED if _is_secret(key) else _nested(item) for key, item in value.items()}
    if isinstance(value, Sequence):
        return [_nested(item) for item in value]
    return repr(value)
