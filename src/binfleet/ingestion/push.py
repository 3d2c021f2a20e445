"""Push channel: a live subscription to the backing store's change stream.

The push channel gives low-latency updates but its transport is allowed to
be unreliable; it reconnects with backoff and relies on the poll channel
for correctness while it is down.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from typing import Any

from binfleet._periodic import Sleep
from binfleet.ingestion.apply import UpdateGate
from binfleet.ingestion.stream import ChangeEvent, ChangeKind, ChangeStream
from binfleet.state.connection import ConnectionStateMachine
from binfleet.state.events import UpdateSource

_logger = logging.getLogger(__name__)


class PushChannel:
    """Maintains one logical subscription and forwards row changes to the gate.

    Parameters
    ----------
    stream
        Transport implementing :class:`ChangeStream`.
    gate
        Dedup gate in front of the state store.
    connection
        State machine driven by subscription lifecycle events.
    table
        Telemetry table to subscribe to.
    initial_backoff, max_backoff
        Reconnect delay starts at *initial_backoff* and doubles up to
        *max_backoff*; a successful acknowledgment resets it.
    probe
        Optional coroutine factory run once, in the background, after the
        first acknowledgment to verify end-to-end delivery.
    """

    def __init__(
        self,
        stream: ChangeStream,
        gate: UpdateGate,
        connection: ConnectionStateMachine,
        *,
        table: str,
        initial_backoff: float = 1.0,
        max_backoff: float = 60.0,
        probe: Callable[[], Awaitable[Any]] | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._stream = stream
        self._gate = gate
        self._connection = connection
        self._table = table
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._probe = probe
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self._probe_task: asyncio.Task[None] | None = None
        self._probed = False
        self.reconnects = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start listening; a running subscription is fully released first."""
        if self._task is not None or self._probe_task is not None:
            await self.stop()
        self._probed = False
        self._task = asyncio.get_running_loop().create_task(self._run(), name="binfleet-push")

    async def stop(self) -> None:
        """Release the subscription. Safe before start and when repeated."""
        tasks = [task for task in (self._task, self._probe_task) if task is not None]
        self._task = None
        self._probe_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._connection.closed()

    async def _run(self) -> None:
        delay = self._initial_backoff
        while True:
            self._connection.subscribe_started()
            _logger.debug("Subscribing to changes on table=%s", self._table)
            try:
                async with aclosing(self._stream.subscribe(self._table)) as events:
                    async for event in events:
                        if event.kind == ChangeKind.SUBSCRIBED:
                            self._on_acknowledged()
                            delay = self._initial_backoff
                            continue
                        self._on_change(event)
                _logger.info("Push subscription closed by server")
                self._connection.closed()
            except Exception as exc:
                _logger.warning("Push subscription error: %s", exc)
                _logger.debug("Push subscription error details", exc_info=True)
                self._connection.failed(str(exc))

            self.reconnects += 1
            _logger.debug("Reconnecting push subscription in %.1fs", delay)
            await self._sleep(delay)
            delay = min(delay * 2, self._max_backoff)

    def _on_acknowledged(self) -> None:
        _logger.info("Subscribed to realtime changes on table=%s", self._table)
        self._connection.acknowledged()
        if self._probe is not None and not self._probed:
            self._probed = True
            self._probe_task = asyncio.get_running_loop().create_task(self._run_probe(), name="binfleet-probe")

    def _on_change(self, event: ChangeEvent) -> None:
        if event.table is not None and event.table != self._table:
            return
        self._gate.submit_record(event.record, source=UpdateSource.PUSH, kind=event.kind)

    async def _run_probe(self) -> None:
        assert self._probe is not None  # noqa: S101
        try:
            await self._probe()
            _logger.debug("Delivery probe written; waiting for it to arrive via push")
        except Exception as exc:
            _logger.warning("Delivery probe failed: %s", exc)
