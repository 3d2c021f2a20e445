"""Internal fixed-interval task runner."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

_logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class PeriodicTask:
    """Runs ``tick`` every ``interval`` seconds on its own asyncio task.

    A failing tick is logged and the loop carries on with the next one.
    ``start`` restarts a running task; ``stop`` is idempotent.
    """

    def __init__(
        self,
        name: str,
        tick: Callable[[], Any],
        *,
        interval: float,
        run_immediately: bool = False,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._name = name
        self._tick = tick
        self._interval = interval
        self._run_immediately = run_immediately
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._task is not None:
            await self.stop()
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self._name)
        _logger.debug("%s started (interval=%ss)", self._name, self._interval)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        _logger.debug("%s stopped", self._name)

    async def _run(self) -> None:
        if not self._run_immediately:
            await self._sleep(self._interval)
        while True:
            try:
                result = self._tick()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _logger.warning("%s tick failed", self._name, exc_info=True)
            await self._sleep(self._interval)
