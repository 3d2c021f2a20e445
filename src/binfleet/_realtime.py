"""Supabase Realtime change stream over an aiohttp websocket.

Realtime speaks the Phoenix channel protocol: every frame is a JSON object
with ``topic``, ``event``, ``payload`` and ``ref``. Joining a channel with a
``postgres_changes`` config subscribes to row changes; the server replies
``phx_reply`` with ``status: ok`` once the subscription is live and then
pushes one ``postgres_changes`` frame per row.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import aiohttp

from binfleet._constants import REALTIME_HEARTBEAT_SECONDS, REALTIME_PATH, REALTIME_PROTOCOL_VERSION
from binfleet._redact import redact_url
from binfleet.config import BackingStoreConfig
from binfleet.exceptions import ChangeStreamError
from binfleet.ingestion.stream import ChangeEvent, ChangeKind

_logger = logging.getLogger(__name__)

_ROW_EVENTS = ("INSERT", "UPDATE")


def realtime_url(config: BackingStoreConfig) -> str:
    base = config.url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]
    return f"{base}{REALTIME_PATH}?apikey={config.api_key}&vsn={REALTIME_PROTOCOL_VERSION}"


def build_join_message(config: BackingStoreConfig, topic: str, ref: str) -> dict[str, Any]:
    return {
        "topic": topic,
        "event": "phx_join",
        "payload": {
            "config": {
                "broadcast": {"ack": False, "self": False},
                "presence": {"key": ""},
                "postgres_changes": [
                    {"event": event, "schema": config.schema, "table": config.table} for event in _ROW_EVENTS
                ],
                "private": False,
            },
            "access_token": config.api_key,
        },
        "ref": ref,
        "join_ref": ref,
    }


def parse_realtime_message(message: dict[str, Any], *, topic: str, join_ref: str) -> ChangeEvent | None:
    """Translate one Realtime frame into a :class:`ChangeEvent`.

    Returns ``None`` for frames that carry nothing for us (heartbeat replies,
    system notices, presence). Raises :class:`ChangeStreamError` when the
    server rejects or closes the channel.
    """
    event = message.get("event")
    payload = message.get("payload")
    if not isinstance(payload, dict):
        payload = {}

    if message.get("topic") not in (topic, "phoenix"):
        return None

    if event == "phx_reply":
        if message.get("ref") != join_ref:
            return None
        status = payload.get("status")
        if status == "ok":
            return ChangeEvent(kind=ChangeKind.SUBSCRIBED)
        response = payload.get("response")
        raise ChangeStreamError(f"Realtime join rejected: status={status} response={response}")

    if event == "phx_error":
        raise ChangeStreamError(f"Realtime channel error: {payload}")
    if event == "phx_close":
        raise ChangeStreamError("Realtime channel closed by server")

    if event == "postgres_changes":
        data = payload.get("data")
        if not isinstance(data, dict):
            return None
        change_type = data.get("type")
        record = data.get("record")
        table = data.get("table")
    elif event in _ROW_EVENTS:
        # Legacy frame shape: the row change is the event itself.
        change_type = event
        record = payload.get("record")
        table = payload.get("table")
    else:
        return None

    if change_type not in _ROW_EVENTS or not isinstance(record, dict):
        return None
    return ChangeEvent(
        kind=ChangeKind(change_type),
        record=record,
        table=table if isinstance(table, str) else None,
    )


class RealtimeChangeStream:
    """Subscribes to INSERT/UPDATE changes of the telemetry table."""

    def __init__(
        self,
        config: BackingStoreConfig,
        http_session: aiohttp.ClientSession,
        *,
        heartbeat_interval: float = REALTIME_HEARTBEAT_SECONDS,
    ) -> None:
        self._config = config
        self._http = http_session
        self._heartbeat_interval = heartbeat_interval
        self._refs = itertools.count(1)

    def _next_ref(self) -> str:
        return str(next(self._refs))

    async def _heartbeat(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            await ws.send_json({"topic": "phoenix", "event": "heartbeat", "payload": {}, "ref": self._next_ref()})

    async def subscribe(self, table: str) -> AsyncIterator[ChangeEvent]:
        topic = f"realtime:{table}"
        join_ref = self._next_ref()
        url = realtime_url(self._config)
        _logger.debug("Realtime connecting url=%s topic=%s", redact_url(url), topic)

        try:
            ws = await self._http.ws_connect(url)
        except aiohttp.ClientError as exc:
            raise ChangeStreamError(f"Realtime connect failed: {exc}") from exc

        heartbeat: asyncio.Task[None] | None = None
        try:
            await ws.send_json(build_join_message(self._config, topic, join_ref))
            heartbeat = asyncio.get_running_loop().create_task(self._heartbeat(ws))

            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        decoded = json.loads(msg.data)
                    except json.JSONDecodeError:
                        _logger.debug("Realtime frame is not JSON: %.200s", msg.data)
                        continue
                    if not isinstance(decoded, dict):
                        continue
                    change = parse_realtime_message(decoded, topic=topic, join_ref=join_ref)
                    if change is not None:
                        yield change
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    raise ChangeStreamError(f"Realtime websocket error: {ws.exception()}")
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.CLOSING):
                    break
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
                try:
                    await heartbeat
                except asyncio.CancelledError:
                    pass
                except Exception:
                    _logger.debug("Realtime heartbeat failed", exc_info=True)
            await ws.close()
            _logger.debug("Realtime websocket closed topic=%s", topic)
