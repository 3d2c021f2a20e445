from __future__ import annotations

from binfleet.state.dedup import Deduplicator
from binfleet.state.events import NormalizedUpdate, UpdateSource
from binfleet.state.policy import should_accept_update


def _update(device_id: int, ts: float, fill: float = 10.0) -> NormalizedUpdate:
    return NormalizedUpdate(device_id=device_id, fill_level=fill, timestamp=ts, source=UpdateSource.POLL)


def test_first_update_for_device_is_accepted() -> None:
    assert should_accept_update(last_applied_ts=None, incoming_ts=0.0)


def test_strictly_increasing_timestamps_all_accepted() -> None:
    dedup = Deduplicator()

    assert [dedup.accept(_update(1, ts)) for ts in (10.0, 11.0, 12.5)] == [True, True, True]
    assert dedup.last_applied(1) == 12.5


def test_duplicate_delivery_accepted_once() -> None:
    dedup = Deduplicator()
    update = _update(1, 100.0)

    assert dedup.accept(update)
    assert not dedup.accept(update.model_copy(update={"source": UpdateSource.PUSH}))


def test_out_of_order_update_rejected() -> None:
    dedup = Deduplicator()

    assert dedup.accept(_update(1, 100.0))
    assert not dedup.accept(_update(1, 90.0))
    assert dedup.last_applied(1) == 100.0


def test_devices_are_tracked_independently() -> None:
    dedup = Deduplicator()

    assert dedup.accept(_update(1, 100.0))
    assert dedup.accept(_update(2, 50.0))
    assert len(dedup) == 2


def test_reset_forgets_records() -> None:
    dedup = Deduplicator()
    dedup.accept(_update(1, 100.0))

    dedup.reset()

    assert dedup.last_applied(1) is None
    assert dedup.accept(_update(1, 100.0))
