from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import aiohttp
import pytest

from binfleet._transport import PostgrestTransport
from binfleet.config import BackingStoreConfig
from binfleet.exceptions import FleetApiError, FleetTransportError

_CONFIG = BackingStoreConfig(url="https://demo.supabase.co", api_key="anon-key")


class _FakeResponse:
    def __init__(self, status: int, text: str) -> None:
        self.status = status
        self._text = text

    async def text(self) -> str:
        return self._text

    async def __aenter__(self) -> _FakeResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


@dataclass
class FakeSession:
    status: int = 200
    body: Any = field(default_factory=list)
    raw_text: str | None = None
    error: Exception | None = None
    requests: list[dict[str, Any]] = field(default_factory=list)

    def request(self, method: str, url: str, **kwargs: Any) -> _FakeResponse:
        self.requests.append({"method": method, "url": url, **kwargs})
        if self.error is not None:
            raise self.error
        text = self.raw_text if self.raw_text is not None else json.dumps(self.body)
        return _FakeResponse(self.status, text)


def _transport(session: FakeSession) -> PostgrestTransport:
    return PostgrestTransport(_CONFIG, session)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_fetch_recent_orders_newest_first() -> None:
    session = FakeSession(body=[{"bin_id": 1001, "fill_level": 45}, "junk"])

    rows = await _transport(session).fetch_recent(20)

    assert rows == [{"bin_id": 1001, "fill_level": 45}]
    request = session.requests[0]
    assert request["method"] == "GET"
    assert request["url"] == "https://demo.supabase.co/rest/v1/bin_updates"
    assert request["params"] == {"select": "*", "order": "created_at.desc", "limit": "20"}
    assert request["headers"]["apikey"] == "anon-key"
    assert request["headers"]["authorization"] == "Bearer anon-key"


@pytest.mark.asyncio
async def test_fetch_latest_filters_by_device() -> None:
    session = FakeSession(body=[])

    assert await _transport(session).fetch_latest(1001) is None
    assert session.requests[0]["params"]["bin_id"] == "eq.1001"


@pytest.mark.asyncio
async def test_insert_returns_stored_row() -> None:
    session = FakeSession(status=201, body=[{"id": 7, "bin_id": 1001, "fill_level": 30}])

    row = await _transport(session).insert({"bin_id": 1001, "fill_level": 30})

    assert row["id"] == 7
    request = session.requests[0]
    assert request["method"] == "POST"
    assert request["headers"]["prefer"] == "return=representation"
    assert json.loads(request["data"]) == {"bin_id": 1001, "fill_level": 30}


@pytest.mark.asyncio
async def test_postgrest_error_body_maps_to_api_error() -> None:
    session = FakeSession(status=404, body={"code": "42P01", "message": 'relation "bin_updates" does not exist'})

    with pytest.raises(FleetApiError) as exc_info:
        await _transport(session).fetch_recent(20)

    assert exc_info.value.code == "42P01"
    assert exc_info.value.endpoint == "/bin_updates"


@pytest.mark.asyncio
async def test_plain_http_error_maps_to_transport_error() -> None:
    session = FakeSession(status=503, raw_text="upstream unavailable")

    with pytest.raises(FleetTransportError) as exc_info:
        await _transport(session).ping()

    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_client_error_maps_to_transport_error() -> None:
    session = FakeSession(error=aiohttp.ClientConnectionError("connection refused"))

    with pytest.raises(FleetTransportError):
        await _transport(session).fetch_recent(5)


@pytest.mark.asyncio
async def test_invalid_json_maps_to_transport_error() -> None:
    session = FakeSession(raw_text="<html>gateway</html>")

    with pytest.raises(FleetTransportError):
        await _transport(session).fetch_recent(5)
