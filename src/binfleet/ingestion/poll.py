"""Periodic pull of recent rows from the backing store.

The poll channel is the correctness backstop: even with the push channel
fully disconnected, fleet state converges within one poll interval.
"""

from __future__ import annotations

import asyncio
import logging

from binfleet._periodic import PeriodicTask, Sleep
from binfleet._transport import TelemetrySource
from binfleet.ingestion.apply import UpdateGate
from binfleet.state.events import UpdateSource

_logger = logging.getLogger(__name__)


class PollChannel:
    def __init__(
        self,
        source: TelemetrySource,
        gate: UpdateGate,
        *,
        interval: float = 5.0,
        limit: int = 20,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._source = source
        self._gate = gate
        self._limit = limit
        self._task = PeriodicTask(
            "binfleet-poll",
            self.poll_once,
            interval=interval,
            run_immediately=True,
            sleep=sleep,
        )

    @property
    def is_running(self) -> bool:
        return self._task.is_running

    async def start(self) -> None:
        await self._task.start()

    async def stop(self) -> None:
        await self._task.stop()

    async def poll_once(self) -> int:
        """Fetch the latest rows and feed them through the gate.

        Rows arrive newest first; they are applied oldest first so every
        accepted row lands in source-timestamp order. Fetch failures are
        logged and count as an empty poll.
        """
        try:
            rows = await self._source.fetch_recent(self._limit)
        except Exception as exc:
            _logger.warning("Poll fetch failed: %s", exc)
            _logger.debug("Poll fetch failure details", exc_info=True)
            return 0

        if not rows:
            return 0

        accepted = 0
        for row in reversed(rows):
            if self._gate.submit_record(row, source=UpdateSource.POLL):
                accepted += 1
        if accepted:
            _logger.debug("Poll applied %d of %d rows", accepted, len(rows))
        return accepted
