"""Fleet telemetry reconciliation engine."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

import aiohttp

from binfleet._mqtt import MqttChangeStream, MqttRelaySettings
from binfleet._periodic import PeriodicTask, Sleep
from binfleet._realtime import RealtimeChangeStream
from binfleet._transport import PostgrestTransport, TelemetrySource
from binfleet.config import FleetConfig
from binfleet.exceptions import FleetError, MalformedRecordError
from binfleet.fleet import default_fleet
from binfleet.ingestion.apply import UpdateGate
from binfleet.ingestion.poll import PollChannel
from binfleet.ingestion.push import PushChannel
from binfleet.ingestion.records import build_report, normalize_record
from binfleet.ingestion.stream import ChangeStream
from binfleet.ingestion.synthetic import SyntheticTelemetryGenerator
from binfleet.models.device import Device, DeviceStatus
from binfleet.models.stats import FleetStats
from binfleet.state.connection import ConnectionState, ConnectionStateMachine
from binfleet.state.dedup import Deduplicator
from binfleet.state.events import NormalizedUpdate, UpdateSource
from binfleet.state.liveness import LivenessMonitor
from binfleet.state.store import FleetSnapshot, FleetStateStore

_logger = logging.getLogger(__name__)

Subscriber = Callable[[NormalizedUpdate], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FleetEngine:
    """Reconciles push and poll telemetry into one fleet view.

    Usage::

        async with FleetEngine(FleetConfig.from_env()) as engine:
            unsubscribe = engine.subscribe(print)
            ...
            print(engine.snapshot().stats)

    The engine can also be driven without the context manager by passing a
    ``source`` and/or ``change_stream`` explicitly and calling
    :meth:`start` / :meth:`stop`.
    """

    def __init__(
        self,
        config: FleetConfig | None = None,
        *,
        devices: Iterable[Device] | None = None,
        source: TelemetrySource | None = None,
        change_stream: ChangeStream | None = None,
        http_session: aiohttp.ClientSession | None = None,
        clock: Callable[[], datetime] = _utcnow,
        rng: random.Random | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config or FleetConfig(push_transport="none")
        self._clock = clock
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._external_session = http_session is not None
        self._http_session = http_session
        self._source = source
        self._change_stream = change_stream
        self._built_source = False
        self._built_stream = False

        self._store = FleetStateStore(devices if devices is not None else default_fleet(clock()), clock=clock)
        self._dedup = Deduplicator()
        self._connection = ConnectionStateMachine()
        self._liveness = LivenessMonitor(
            self._store,
            self._config.monitored_device_id,
            timeout=self._config.liveness_timeout,
            clock=clock,
        )
        self._gate = UpdateGate(self._dedup, self._store, on_device_reported=self._on_device_reported)
        self._synthetic = SyntheticTelemetryGenerator(
            self._store,
            exclude=(self._config.monitored_device_id,),
            rng=self._rng,
            interval=self._config.synthetic_interval,
            update_probability=self._config.synthetic_update_probability,
            fill_delta=self._config.synthetic_fill_delta,
            servicing_probability=self._config.synthetic_servicing_probability,
            servicing_drop=self._config.synthetic_servicing_drop,
            battery_drain_probability=self._config.synthetic_battery_drain_probability,
            sleep=sleep,
        )
        self._liveness_task = PeriodicTask(
            "binfleet-liveness",
            self._liveness.check,
            interval=self._config.liveness_interval,
            sleep=sleep,
        )
        self._poll: PollChannel | None = None
        self._push: PushChannel | None = None

        self._subscribers: list[Subscriber] = []
        self._store.add_listener(self._notify)
        self._started = False
        self._lifecycle = asyncio.Lock()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FleetEngine:
        backing = self._config.backing_store
        needs_http = backing.configured and (
            self._source is None or (self._change_stream is None and self._config.push_transport == "realtime")
        )
        if needs_http and self._http_session is None:
            self._http_session = aiohttp.ClientSession()

        if self._source is None and backing.configured:
            assert self._http_session is not None  # noqa: S101
            self._source = PostgrestTransport(backing, self._http_session)
            self._built_source = True
        elif not backing.configured and self._source is None:
            _logger.warning("Backing store is not configured; running on synthetic telemetry only")

        if self._change_stream is None:
            self._change_stream = self._build_change_stream()
            self._built_stream = self._change_stream is not None

        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        if self._built_source:
            self._source = None
            self._built_source = False
        if self._built_stream:
            self._change_stream = None
            self._built_stream = False

    def _build_change_stream(self) -> ChangeStream | None:
        config = self._config
        if config.push_transport == "realtime" and config.backing_store.configured:
            assert self._http_session is not None  # noqa: S101
            return RealtimeChangeStream(config.backing_store, self._http_session)
        if config.push_transport == "mqtt" and config.mqtt_host:
            return MqttChangeStream(
                MqttRelaySettings(
                    host=config.mqtt_host,
                    port=config.mqtt_port,
                    topic=config.relay_topic,
                    username=config.mqtt_username,
                    password=config.mqtt_password,
                    tls=config.mqtt_tls,
                    keepalive=config.mqtt_keepalive,
                ),
                logger=_logger,
            )
        return None

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start every producer. Restarts cleanly when already running.

        Start and stop are serialized: a stop issued while hydration is
        still waiting on the backing store runs once start has finished.
        """
        async with self._lifecycle:
            if self._started:
                await self._shutdown()
            await self._startup()

    async def stop(self) -> None:
        """Stop all tasks and release the push subscription. Idempotent."""
        async with self._lifecycle:
            await self._shutdown()

    async def _startup(self) -> None:
        self._dedup.reset()
        self._started = True

        await self._hydrate()

        if self._source is not None:
            self._poll = PollChannel(
                self._source,
                self._gate,
                interval=self._config.poll_interval,
                limit=self._config.poll_limit,
                sleep=self._sleep,
            )
            await self._poll.start()

        if self._change_stream is not None:
            probe = self._send_probe if self._config.probe_enabled and self._source is not None else None
            self._push = PushChannel(
                self._change_stream,
                self._gate,
                self._connection,
                table=self._config.backing_store.table,
                initial_backoff=self._config.reconnect_initial_delay,
                max_backoff=self._config.reconnect_max_delay,
                probe=probe,
                sleep=self._sleep,
            )
            await self._push.start()

        await self._liveness_task.start()
        if self._config.synthetic_enabled:
            await self._synthetic.start()

        _logger.info(
            "Fleet engine started devices=%d poll=%s push=%s",
            len(self._store.device_ids()),
            self._poll is not None,
            self._push is not None,
        )

    async def _shutdown(self) -> None:
        if not self._started:
            return
        self._started = False

        if self._push is not None:
            await self._push.stop()
            self._push = None
        if self._poll is not None:
            await self._poll.stop()
            self._poll = None
        await self._liveness_task.stop()
        await self._synthetic.stop()
        self._dedup.reset()
        _logger.info("Fleet engine stopped")

    async def _hydrate(self) -> None:
        """Seed the monitored device from its latest stored row (best effort)."""
        if self._source is None:
            return
        device_id = self._config.monitored_device_id
        try:
            row = await self._source.fetch_latest(device_id)
        except Exception as exc:
            _logger.warning("Could not load latest row for device %s: %s", device_id, exc)
            return
        if row is not None:
            self._gate.submit_record(row, source=UpdateSource.POLL)

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Deliver every applied update to *callback*; returns an unsubscriber."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _notify(self, update: NormalizedUpdate) -> None:
        for callback in list(self._subscribers):
            try:
                callback(update)
            except Exception:
                _logger.warning("Subscriber %r failed for device=%s", callback, update.device_id, exc_info=True)

    def _on_device_reported(self, device_id: int) -> None:
        if device_id == self._liveness.device_id:
            self._liveness.mark_live()

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def config(self) -> FleetConfig:
        return self._config

    @property
    def store(self) -> FleetStateStore:
        return self._store

    @property
    def liveness(self) -> LivenessMonitor:
        return self._liveness

    @property
    def synthetic(self) -> SyntheticTelemetryGenerator:
        return self._synthetic

    @property
    def connection(self) -> ConnectionStateMachine:
        return self._connection

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection.current()

    @property
    def device_live(self) -> bool:
        """Whether the monitored device has reported within its timeout."""
        return self._liveness.is_live

    def snapshot(self) -> FleetSnapshot:
        return self._store.snapshot()

    def stats(self) -> FleetStats:
        return self._store.stats()

    async def poll_now(self) -> int:
        """Run one poll outside the schedule; returns accepted rows."""
        if self._poll is None:
            if self._source is None:
                return 0
            return await PollChannel(self._source, self._gate, limit=self._config.poll_limit).poll_once()
        return await self._poll.poll_once()

    # ------------------------------------------------------------------
    # Backing store helpers
    # ------------------------------------------------------------------

    def _require_source(self) -> TelemetrySource:
        if self._source is None:
            raise FleetError("No backing store configured. Use 'async with FleetEngine(config) as engine:'")
        return self._source

    async def check_connection(self) -> bool:
        """Return True when the backing store answers a trivial query."""
        source = self._require_source()
        try:
            await source.ping()
        except Exception as exc:
            _logger.warning("Backing store connection check failed: %s", exc)
            return False
        return True

    async def latest_record(self, device_id: int) -> NormalizedUpdate | None:
        """Newest stored report for *device_id*, normalized (not applied)."""
        row = await self._require_source().fetch_latest(device_id)
        if row is None:
            return None
        try:
            return normalize_record(row, source=UpdateSource.POLL)
        except MalformedRecordError as exc:
            _logger.warning("Latest row for device %s is malformed: %s", device_id, exc)
            return None

    async def recent_records(self, limit: int = 10) -> list[dict[str, Any]]:
        """Raw most recent rows, newest first."""
        return await self._require_source().fetch_recent(limit)

    async def send_test_record(
        self,
        device_id: int,
        fill_level: float,
        battery_level: float | None = None,
    ) -> dict[str, Any]:
        """Insert a report as a device would; it comes back via push/poll."""
        return await self._require_source().insert(build_report(device_id, fill_level, battery_level))

    async def _send_probe(self) -> None:
        record = {
            "bin_id": self._config.probe_device_id,
            "fill_level": self._rng.randrange(100),
            "battery_level": 100,
            "status": DeviceStatus.NORMAL.value,
        }
        await self._require_source().insert(record)

    def inject(
        self,
        device_id: int,
        fill_level: float,
        battery_level: float | None = None,
        *,
        timestamp: float | None = None,
    ) -> bool:
        """Feed a simulated device report through the dedup gate."""
        update = NormalizedUpdate(
            device_id=device_id,
            fill_level=fill_level,
            battery_level=battery_level,
            timestamp=timestamp if timestamp is not None else time.time(),
            source=UpdateSource.MANUAL,
        )
        return self._gate.submit(update)
