"""Custom exception hierarchy for binfleet."""

from __future__ import annotations

from typing import Any


class FleetError(Exception):
    """Base exception for all binfleet errors."""


class FleetConfigError(FleetError):
    """Invalid or missing configuration."""


class FleetTransportError(FleetError):
    """HTTP-level failure (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class FleetApiError(FleetError):
    """Backing store rejected the request with an application-level error.

    PostgREST reports these as a JSON body carrying ``code`` and
    ``message`` alongside a non-2xx status.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        endpoint: str = "",
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        super().__init__(message)


class ChangeStreamError(FleetError):
    """The push subscription failed or was closed by the server."""


class MalformedRecordError(FleetError):
    """An inbound telemetry record is missing a device id or fill level.

    The offending record is kept on ``record`` so callers can log it.
    """

    def __init__(self, message: str, *, record: Any = None) -> None:
        self.record = record
        super().__init__(message)
