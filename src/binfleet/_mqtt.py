"""MQTT relay change stream.

Some deployments cannot reach the Realtime websocket and instead run a
relay that republishes every telemetry row change to an MQTT topic as
``{"type": "INSERT"|"UPDATE", "table": ..., "record": {...}}``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from binfleet.exceptions import ChangeStreamError
from binfleet.ingestion.stream import ChangeEvent, ChangeKind


@dataclass(frozen=True)
class MqttRelaySettings:
    """Broker details for the relay topic."""

    host: str
    port: int
    topic: str
    client_id: str = ""
    username: str | None = None
    password: str | None = None
    tls: bool = False
    keepalive: int = 120


@dataclass(frozen=True)
class _Disconnected:
    reason: str


def decode_relay_payload(payload: bytes) -> ChangeEvent | None:
    """Parse one relay message; ``None`` for anything that is not a row change."""
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(parsed, dict):
        return None

    change_type = str(parsed.get("type") or parsed.get("eventType") or "INSERT").upper()
    if change_type not in (ChangeKind.INSERT, ChangeKind.UPDATE):
        return None

    record = parsed.get("record", parsed.get("new"))
    if not isinstance(record, dict):
        return None
    table = parsed.get("table")
    return ChangeEvent(
        kind=ChangeKind(change_type),
        record=record,
        table=table if isinstance(table, str) else None,
    )


class MqttRelayRuntime:
    """Threaded paho-mqtt runtime that emits change events onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_item: Callable[[ChangeEvent | _Disconnected], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_item = on_item
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topic: str | None = None

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def _emit(self, item: ChangeEvent | _Disconnected) -> None:
        self._loop.call_soon_threadsafe(self._on_item, item)

    def start(self, settings: MqttRelaySettings) -> None:
        """Connect and subscribe with provided broker details."""
        self.stop()
        self._logger.debug(
            "MQTT relay start requested host=%s port=%s topic=%s",
            settings.host,
            settings.port,
            settings.topic,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=settings.client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        if settings.tls:
            client.tls_set()

        self._topic = settings.topic

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT relay connect failed: %s", reason_code)
                self._emit(_Disconnected(f"connect failed: {reason_code}"))
                return
            self._logger.debug("MQTT relay connected reason=%s", reason_code)
            if self._topic:
                c.subscribe(self._topic, qos=1)

        def on_subscribe(
            _c: mqtt.Client,
            _userdata: Any,
            _mid: int,
            reason_codes: Any,
            _properties: Any,
        ) -> None:
            if any(code.value >= 0x80 for code in reason_codes):
                self._emit(_Disconnected(f"subscribe rejected: {reason_codes}"))
                return
            self._emit(ChangeEvent(kind=ChangeKind.SUBSCRIBED))

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            event = decode_relay_payload(msg.payload)
            if event is None:
                self._logger.debug("Ignoring relay payload on topic=%s", msg.topic)
                return
            self._emit(event)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT relay disconnected: %s", reason_code)
                self._emit(_Disconnected(f"disconnected: {reason_code}"))

        client.on_connect = on_connect
        client.on_subscribe = on_subscribe
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(settings.host, settings.port, keepalive=settings.keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT relay network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topic = None

        if client is None:
            return
        try:
            if was_running:
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT relay network loop stopped")


class MqttChangeStream:
    """:class:`ChangeStream` backed by the MQTT relay.

    Paho callbacks run on the client's network thread; they are marshalled
    onto the event loop and consumed through an :class:`asyncio.Queue`.
    A broker disconnect ends the subscription with
    :class:`ChangeStreamError` so the push channel can back off and retry.
    """

    def __init__(self, settings: MqttRelaySettings, *, logger: logging.Logger | None = None) -> None:
        self._settings = settings
        self._logger = logger or logging.getLogger(__name__)

    async def subscribe(self, table: str) -> AsyncIterator[ChangeEvent]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[ChangeEvent | _Disconnected] = asyncio.Queue()
        runtime = MqttRelayRuntime(loop=loop, on_item=queue.put_nowait, logger=self._logger)

        try:
            await loop.run_in_executor(None, runtime.start, self._settings)
        except OSError as exc:
            raise ChangeStreamError(f"MQTT relay connect failed: {exc}") from exc

        try:
            while True:
                item = await queue.get()
                if isinstance(item, _Disconnected):
                    raise ChangeStreamError(f"MQTT relay {item.reason}")
                if item.table is not None and item.table != table:
                    continue
                yield item
        finally:
            await loop.run_in_executor(None, runtime.stop)
