"""HTTP transport for the backing store's PostgREST API."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from binfleet._constants import USER_AGENT
from binfleet._redact import redact_for_log
from binfleet.config import BackingStoreConfig
from binfleet.exceptions import FleetApiError, FleetTransportError

_logger = logging.getLogger(__name__)


class TelemetrySource(Protocol):
    """Structural interface of the backing store as seen by the engine.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`PostgrestTransport`) concrete.
    """

    async def fetch_recent(self, limit: int) -> list[dict[str, Any]]: ...

    async def fetch_latest(self, device_id: int) -> dict[str, Any] | None: ...

    async def insert(self, record: Mapping[str, Any]) -> dict[str, Any]: ...

    async def ping(self) -> None: ...


class PostgrestTransport:
    """Reads and writes telemetry rows through PostgREST."""

    def __init__(self, config: BackingStoreConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._config.api_key,
            "authorization": f"Bearer {self._config.api_key}",
            "accept": "application/json",
            "accept-profile": self._config.schema,
            "content-profile": self._config.schema,
            "user-agent": USER_AGENT,
        }

    async def _request(
        self,
        method: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Mapping[str, Any] | None = None,
        extra_headers: Mapping[str, str] | None = None,
    ) -> Any:
        endpoint = f"/{self._config.table}"
        url = f"{self._config.rest_url}{endpoint}"
        headers = self._headers()
        if extra_headers:
            headers.update(extra_headers)
        data: str | None = None
        if body is not None:
            headers["content-type"] = "application/json"
            data = json.dumps(body, separators=(",", ":"))

        _logger.debug("%s %s params=%s headers=%s", method, url, params, redact_for_log(headers))

        try:
            async with self._http.request(method, url, params=params, data=data, headers=headers) as resp:
                text = await resp.text()
                status = resp.status
        except aiohttp.ClientError as exc:
            raise FleetTransportError(f"Request to {endpoint} failed: {exc}", endpoint=endpoint) from exc

        if status >= 400:
            self._raise_for_error(status, text, endpoint)

        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise FleetTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            ) from exc

    @staticmethod
    def _raise_for_error(status: int, text: str, endpoint: str) -> None:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict) and payload.get("code"):
            raise FleetApiError(
                f"HTTP {status} from {endpoint}: {payload.get('message', '')}",
                code=str(payload["code"]),
                endpoint=endpoint,
            )
        raise FleetTransportError(
            f"HTTP {status} from {endpoint}: {text[:200]}",
            status_code=status,
            endpoint=endpoint,
        )

    @staticmethod
    def _rows(decoded: Any, endpoint: str) -> list[dict[str, Any]]:
        if decoded is None:
            return []
        if not isinstance(decoded, list):
            raise FleetTransportError(f"Expected a list of rows from {endpoint}", endpoint=endpoint)
        return [row for row in decoded if isinstance(row, dict)]

    async def fetch_recent(self, limit: int) -> list[dict[str, Any]]:
        """Most recent *limit* rows, newest first."""
        decoded = await self._request(
            "GET",
            params={"select": "*", "order": "created_at.desc", "limit": str(limit)},
        )
        return self._rows(decoded, self._config.table)

    async def fetch_latest(self, device_id: int) -> dict[str, Any] | None:
        """Newest row for one device, if any."""
        decoded = await self._request(
            "GET",
            params={
                "select": "*",
                "bin_id": f"eq.{device_id}",
                "order": "created_at.desc",
                "limit": "1",
            },
        )
        rows = self._rows(decoded, self._config.table)
        return rows[0] if rows else None

    async def insert(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Insert one row and return it as stored."""
        decoded = await self._request(
            "POST",
            body=record,
            extra_headers={"prefer": "return=representation"},
        )
        rows = self._rows(decoded, self._config.table)
        if not rows:
            raise FleetTransportError(
                f"Insert into {self._config.table} returned no row",
                endpoint=f"/{self._config.table}",
            )
        return rows[0]

    async def ping(self) -> None:
        """Cheapest possible read; raises when the table is unreachable."""
        await self._request("GET", params={"select": "bin_id", "limit": "1"})
