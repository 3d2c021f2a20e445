from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import pytest

from binfleet.exceptions import FleetTransportError
from binfleet.fleet import default_fleet
from binfleet.ingestion.apply import UpdateGate
from binfleet.ingestion.poll import PollChannel
from binfleet.state.dedup import Deduplicator
from binfleet.state.events import NormalizedUpdate
from binfleet.state.store import FleetStateStore


def _dt() -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC)


@dataclass
class FakeTelemetrySource:
    rows: list[dict[str, Any]] = field(default_factory=list)
    fail_with: Exception | None = None
    calls: int = 0

    async def fetch_recent(self, limit: int) -> list[dict[str, Any]]:
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return self.rows[:limit]

    async def fetch_latest(self, device_id: int) -> dict[str, Any] | None:
        return next((row for row in self.rows if row.get("bin_id") == device_id), None)

    async def insert(self, record: Mapping[str, Any]) -> dict[str, Any]:
        self.rows.insert(0, dict(record))
        return dict(record)

    async def ping(self) -> None:
        return None


def _pipeline(source: FakeTelemetrySource) -> tuple[PollChannel, FleetStateStore, UpdateGate]:
    store = FleetStateStore(default_fleet(_dt()), clock=_dt)
    gate = UpdateGate(Deduplicator(), store)
    return PollChannel(source, gate, interval=5.0, limit=20), store, gate


@pytest.mark.asyncio
async def test_rows_applied_oldest_first() -> None:
    # Newest first, as the backing store returns them.
    source = FakeTelemetrySource(
        rows=[
            {"bin_id": 1001, "fill_level": 70, "created_at": 300},
            {"bin_id": 1001, "fill_level": 40, "created_at": 200},
            {"bin_id": 1001, "fill_level": 10, "created_at": 100},
        ]
    )
    channel, store, _gate = _pipeline(source)
    applied: list[float] = []
    store.add_listener(lambda update: applied.append(update.fill_level))

    accepted = await channel.poll_once()

    assert accepted == 3
    assert applied == [10, 40, 70]
    device = store.get(1001)
    assert device is not None and device.fill_level == 70


@pytest.mark.asyncio
async def test_repeated_poll_is_deduplicated() -> None:
    source = FakeTelemetrySource(rows=[{"bin_id": 1002, "fill_level": 55, "created_at": 100}])
    channel, store, gate = _pipeline(source)

    assert await channel.poll_once() == 1
    assert await channel.poll_once() == 0
    assert store.revision == 1
    assert gate.rejected == 1


@pytest.mark.asyncio
async def test_fetch_failure_counts_as_empty_poll() -> None:
    source = FakeTelemetrySource(fail_with=FleetTransportError("boom", status_code=503, endpoint="/bin_updates"))
    channel, store, _gate = _pipeline(source)

    assert await channel.poll_once() == 0
    assert store.revision == 0


@pytest.mark.asyncio
async def test_empty_result_is_noop() -> None:
    channel, store, _gate = _pipeline(FakeTelemetrySource())

    assert await channel.poll_once() == 0
    assert store.revision == 0


@pytest.mark.asyncio
async def test_malformed_rows_are_skipped() -> None:
    source = FakeTelemetrySource(
        rows=[
            {"bin_id": 1003, "fill_level": 20, "created_at": 200},
            {"fill_level": 99, "created_at": 150},
            "garbage",  # type: ignore[list-item]
        ]
    )
    channel, store, gate = _pipeline(source)

    assert await channel.poll_once() == 1
    assert gate.malformed == 2
    device = store.get(1003)
    assert device is not None and device.fill_level == 20


@pytest.mark.asyncio
async def test_periodic_loop_runs_immediately_and_keeps_going() -> None:
    source = FakeTelemetrySource(rows=[{"bin_id": 1004, "fill_level": 60, "created_at": 100}])
    store = FleetStateStore(default_fleet(_dt()), clock=_dt)
    gate = UpdateGate(Deduplicator(), store)
    ticks = asyncio.Event()

    async def _sleep(_seconds: float) -> None:
        if source.calls >= 3:
            ticks.set()
        await asyncio.sleep(0)

    seen: list[NormalizedUpdate] = []
    store.add_listener(seen.append)
    channel = PollChannel(source, gate, interval=5.0, sleep=_sleep)

    await channel.start()
    await asyncio.wait_for(ticks.wait(), timeout=1.0)
    await channel.stop()
    await channel.stop()

    assert not channel.is_running
    assert source.calls >= 3
    assert len(seen) == 1
