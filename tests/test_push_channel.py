from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from datetime import UTC, datetime

import pytest

from binfleet.exceptions import ChangeStreamError
from binfleet.fleet import default_fleet
from binfleet.ingestion.apply import UpdateGate
from binfleet.ingestion.push import PushChannel
from binfleet.ingestion.stream import ChangeEvent, ChangeKind
from binfleet.state.connection import ConnectionState, ConnectionStateMachine
from binfleet.state.dedup import Deduplicator
from binfleet.state.store import FleetStateStore

_SUBSCRIBED = ChangeEvent(kind=ChangeKind.SUBSCRIBED)


def _dt() -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC)


def _insert(device_id: int, fill: float, ts: float, table: str | None = "bin_updates") -> ChangeEvent:
    return ChangeEvent(
        kind=ChangeKind.INSERT,
        record={"bin_id": device_id, "fill_level": fill, "created_at": ts},
        table=table,
    )


class ScriptedChangeStream:
    """Each subscribe() replays the next script; items that are exceptions are raised.

    When scripts run out the subscription stays open until cancelled.
    """

    def __init__(self, *scripts: list[ChangeEvent | Exception], teardown_delay: float = 0.0) -> None:
        self._scripts = list(scripts)
        self._teardown_delay = teardown_delay
        self.subscriptions = 0
        self.closed = 0
        self.open = 0
        self.max_open = 0
        self.idle = asyncio.Event()

    async def subscribe(self, table: str) -> AsyncIterator[ChangeEvent]:
        self.subscriptions += 1
        self.open += 1
        self.max_open = max(self.max_open, self.open)
        script = self._scripts.pop(0) if self._scripts else None
        try:
            if script is None:
                self.idle.set()
                await asyncio.Event().wait()
                return
            for item in script:
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            if self._teardown_delay:
                await asyncio.sleep(self._teardown_delay)
            self.open -= 1
            self.closed += 1


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


def _channel(
    stream: ScriptedChangeStream,
    **kwargs: object,
) -> tuple[PushChannel, FleetStateStore, ConnectionStateMachine, RecordingSleep]:
    store = FleetStateStore(default_fleet(_dt()), clock=_dt)
    connection = ConnectionStateMachine()
    sleep = RecordingSleep()
    channel = PushChannel(
        stream,
        UpdateGate(Deduplicator(), store),
        connection,
        table="bin_updates",
        sleep=sleep,
        **kwargs,  # type: ignore[arg-type]
    )
    return channel, store, connection, sleep


@pytest.mark.asyncio
async def test_acknowledged_subscription_delivers_changes() -> None:
    stream = ScriptedChangeStream([_SUBSCRIBED, _insert(1001, 45, 100)])
    channel, store, connection, _sleep = _channel(stream)
    states: list[ConnectionState] = []
    connection.add_observer(lambda _prev, cur: states.append(cur))

    await channel.start()
    await asyncio.wait_for(stream.idle.wait(), timeout=1.0)
    await channel.stop()

    device = store.get(1001)
    assert device is not None and device.fill_level == 45
    assert states[:3] == [ConnectionState.CONNECTING, ConnectionState.CONNECTED, ConnectionState.DISCONNECTED]
    assert connection.current() == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_error_reconnects_with_doubling_backoff() -> None:
    boom = ChangeStreamError("socket reset")
    stream = ScriptedChangeStream([boom], [boom], [boom], [_SUBSCRIBED, boom])
    channel, _store, connection, sleep = _channel(stream, initial_backoff=1.0, max_backoff=3.0)

    await channel.start()
    await asyncio.wait_for(stream.idle.wait(), timeout=1.0)

    assert connection.current() == ConnectionState.CONNECTING
    await channel.stop()

    # 1, 2, capped at 3, then reset to 1 by the acknowledgment.
    assert sleep.delays == [1.0, 2.0, 3.0, 1.0]
    assert channel.reconnects == 4
    assert stream.subscriptions == 5
    assert stream.closed == 5


@pytest.mark.asyncio
async def test_server_close_reconnects() -> None:
    stream = ScriptedChangeStream([_SUBSCRIBED])
    channel, _store, connection, sleep = _channel(stream)
    states: list[ConnectionState] = []
    connection.add_observer(lambda _prev, cur: states.append(cur))

    await channel.start()
    await asyncio.wait_for(stream.idle.wait(), timeout=1.0)
    await channel.stop()

    assert sleep.delays == [1.0]
    assert states[:4] == [
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED,
        ConnectionState.DISCONNECTED,
        ConnectionState.CONNECTING,
    ]


@pytest.mark.asyncio
async def test_changes_for_other_tables_are_ignored() -> None:
    stream = ScriptedChangeStream([_SUBSCRIBED, _insert(1002, 90, 100, table="audit_log"), _insert(1003, 5, 100)])
    channel, store, _connection, _sleep = _channel(stream)

    await channel.start()
    await asyncio.wait_for(stream.idle.wait(), timeout=1.0)
    await channel.stop()

    assert store.revision == 1
    device = store.get(1003)
    assert device is not None and device.fill_level == 5


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent() -> None:
    stream = ScriptedChangeStream()
    channel, _store, connection, _sleep = _channel(stream)

    await channel.stop()
    await channel.start()
    await channel.start()
    await asyncio.wait_for(stream.idle.wait(), timeout=1.0)
    await channel.stop()
    await channel.stop()

    assert not channel.is_running
    assert stream.open == 0
    assert connection.current() == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_restart_releases_previous_subscription_first() -> None:
    stream = ScriptedChangeStream(teardown_delay=0.05)
    channel, _store, connection, _sleep = _channel(stream)

    await channel.start()
    await asyncio.wait_for(stream.idle.wait(), timeout=1.0)
    stream.idle.clear()

    await channel.start()
    assert stream.closed == 1
    await asyncio.wait_for(stream.idle.wait(), timeout=1.0)
    await channel.stop()

    assert stream.subscriptions == 2
    assert stream.max_open == 1
    assert stream.open == 0
    assert connection.current() == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_probe_runs_once_after_first_acknowledgment() -> None:
    boom = ChangeStreamError("socket reset")
    stream = ScriptedChangeStream([_SUBSCRIBED, boom], [_SUBSCRIBED])
    probes: list[int] = []

    async def _probe() -> None:
        probes.append(1)

    channel, _store, _connection, _sleep = _channel(stream, probe=_probe)

    await channel.start()
    await asyncio.wait_for(stream.idle.wait(), timeout=1.0)
    await asyncio.sleep(0)
    await channel.stop()

    assert probes == [1]


@pytest.mark.asyncio
async def test_probe_failure_is_not_fatal() -> None:
    stream = ScriptedChangeStream([_SUBSCRIBED, _insert(1004, 66, 100)])

    async def _probe() -> None:
        raise ChangeStreamError("insert refused")

    channel, store, connection, _sleep = _channel(stream, probe=_probe)

    await channel.start()
    await asyncio.wait_for(stream.idle.wait(), timeout=1.0)
    assert connection.current() == ConnectionState.CONNECTING
    await channel.stop()

    device = store.get(1004)
    assert device is not None and device.fill_level == 66
