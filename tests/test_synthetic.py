from __future__ import annotations

import random
from datetime import UTC, datetime

import pytest

from binfleet.fleet import default_fleet
from binfleet.ingestion.synthetic import SyntheticTelemetryGenerator
from binfleet.models.device import Device, DeviceStatus, Location
from binfleet.state.events import NormalizedUpdate, UpdateSource
from binfleet.state.policy import derive_status
from binfleet.state.store import FleetStateStore


def _dt() -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC)


def test_random_walk_stays_in_bounds_over_many_ticks() -> None:
    store = FleetStateStore(default_fleet(_dt()), clock=_dt)
    generator = SyntheticTelemetryGenerator(store, exclude=(1001,), rng=random.Random(1234))

    for _ in range(10_000):
        generator.tick()
        for device in store.snapshot().devices:
            assert 0 <= device.fill_level <= 100
            assert 0 <= device.battery_level <= 100
            if device.status != DeviceStatus.SERVICING:
                assert device.status == derive_status(device.fill_level)


def test_excluded_device_is_never_written() -> None:
    store = FleetStateStore(default_fleet(_dt()), clock=_dt)
    generator = SyntheticTelemetryGenerator(store, exclude=(1001,), rng=random.Random(7), update_probability=1.0)
    sources: list[tuple[int, UpdateSource]] = []
    store.add_listener(lambda update: sources.append((update.device_id, update.source)))

    for _ in range(50):
        assert generator.tick() == 7

    assert all(device_id != 1001 for device_id, _ in sources)
    assert {source for _, source in sources} == {UpdateSource.SYNTHETIC}


def test_zero_probability_changes_nothing() -> None:
    store = FleetStateStore(default_fleet(_dt()), clock=_dt)
    generator = SyntheticTelemetryGenerator(store, rng=random.Random(3), update_probability=0.0)

    assert generator.tick() == 0
    assert store.revision == 0


def test_servicing_event_drops_fill_level() -> None:
    device = Device(id=2, location=Location(lat=0, lng=0), fill_level=90, battery_level=50)
    store = FleetStateStore([device], clock=_dt)
    generator = SyntheticTelemetryGenerator(
        store,
        rng=random.Random(5),
        fill_delta=(0, 0),
        servicing_probability=1.0,
        battery_drain_probability=1.0,
    )

    proposed = generator.propose(device)

    assert proposed == {"fill_level": 70.0, "status": DeviceStatus.SERVICING, "battery_level": 49.0}


def test_servicing_floor_is_zero() -> None:
    device = Device(id=2, location=Location(lat=0, lng=0), fill_level=5, battery_level=0)
    store = FleetStateStore([device], clock=_dt)
    generator = SyntheticTelemetryGenerator(
        store,
        rng=random.Random(5),
        fill_delta=(0, 0),
        servicing_probability=1.0,
        battery_drain_probability=1.0,
    )

    proposed = generator.propose(device)

    assert proposed["fill_level"] == 0
    assert proposed["battery_level"] == 0


@pytest.mark.parametrize("seed", [0, 1, 2])
def test_synthetic_writes_emit_updates(seed: int) -> None:
    store = FleetStateStore(default_fleet(_dt()), clock=_dt)
    generator = SyntheticTelemetryGenerator(store, rng=random.Random(seed), update_probability=1.0)
    seen: list[NormalizedUpdate] = []
    store.add_listener(seen.append)

    written = generator.tick()

    assert written == len(seen) == 8
