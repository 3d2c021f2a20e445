"""Engine configuration for binfleet."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from binfleet._constants import (
    DEFAULT_MONITORED_DEVICE_ID,
    DEFAULT_SCHEMA,
    DEFAULT_TABLE,
    PROBE_DEVICE_ID,
)
from binfleet.exceptions import FleetConfigError

PUSH_TRANSPORTS: frozenset[str] = frozenset({"realtime", "mqtt", "none"})

_PLACEHOLDER_URLS = frozenset({"", "your_supabase_project_url"})
_PLACEHOLDER_KEYS = frozenset({"", "your_supabase_anon_key"})


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class BackingStoreConfig:
    """Where telemetry rows live.

    The backing store is a Supabase project: rows are read through the
    PostgREST API and change notifications come from the Realtime service.
    """

    url: str = ""
    api_key: str = ""
    schema: str = DEFAULT_SCHEMA
    table: str = DEFAULT_TABLE

    @property
    def configured(self) -> bool:
        """Whether url and key look like real values rather than placeholders."""
        return (
            self.url not in _PLACEHOLDER_URLS
            and self.url.startswith(("https://", "http://"))
            and self.api_key not in _PLACEHOLDER_KEYS
        )

    @property
    def rest_url(self) -> str:
        return f"{self.url.rstrip('/')}/rest/v1"


@dataclasses.dataclass(frozen=True)
class FleetConfig:
    """Engine configuration.

    Parameters
    ----------
    backing_store : BackingStoreConfig
        Supabase project holding the telemetry table.
    push_transport : str
        ``"realtime"`` (Supabase Realtime websocket), ``"mqtt"`` (relay
        topic) or ``"none"`` for poll-only operation.
    poll_interval : float
        Seconds between backing-store polls.
    poll_limit : int
        Number of most recent rows fetched per poll.
    reconnect_initial_delay : float
        First backoff delay after the push subscription drops.
    reconnect_max_delay : float
        Upper bound for the doubling reconnect backoff.
    probe_enabled : bool
        Insert one probe row after the first push acknowledgment.
    probe_device_id : int
        Device id written by the probe.
    monitored_device_id : int
        The sensor-backed device watched by the liveness monitor.
    liveness_interval : float
        Seconds between liveness checks.
    liveness_timeout : float
        Silence (seconds) after which the monitored device is reset.
    synthetic_enabled : bool
        Run the synthetic telemetry generator for unsensored devices.
    synthetic_interval : float
        Seconds between synthetic ticks.
    synthetic_update_probability : float
        Per-device chance of a change on each tick.
    synthetic_fill_delta : tuple[int, int]
        Inclusive bounds of the random fill-level step.
    synthetic_servicing_probability : float
        Chance that a changed device is emptied and marked servicing.
    synthetic_servicing_drop : float
        Fill-level reduction applied by a servicing event.
    synthetic_battery_drain_probability : float
        Chance that a changed device loses one battery percent.
    mqtt_host : str or None
        MQTT relay broker host (``push_transport="mqtt"``).
    mqtt_port : int
        MQTT relay broker port.
    mqtt_topic : str or None
        Relay topic; defaults to ``binfleet/<table>``.
    mqtt_username, mqtt_password : str or None
        Broker credentials.
    mqtt_tls : bool
        Enable TLS for the broker connection.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    """

    backing_store: BackingStoreConfig = dataclasses.field(default_factory=BackingStoreConfig)
    push_transport: str = "realtime"
    poll_interval: float = 5.0
    poll_limit: int = 20
    reconnect_initial_delay: float = 1.0
    reconnect_max_delay: float = 60.0
    probe_enabled: bool = False
    probe_device_id: int = PROBE_DEVICE_ID
    monitored_device_id: int = DEFAULT_MONITORED_DEVICE_ID
    liveness_interval: float = 30.0
    liveness_timeout: float = 120.0
    synthetic_enabled: bool = True
    synthetic_interval: float = 5.0
    synthetic_update_probability: float = 0.3
    synthetic_fill_delta: tuple[int, int] = (-2, 5)
    synthetic_servicing_probability: float = 0.02
    synthetic_servicing_drop: float = 20.0
    synthetic_battery_drain_probability: float = 0.2
    mqtt_host: str | None = None
    mqtt_port: int = 1883
    mqtt_topic: str | None = None
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_tls: bool = False
    mqtt_keepalive: int = 120

    def __post_init__(self) -> None:
        if self.push_transport not in PUSH_TRANSPORTS:
            raise FleetConfigError(
                f"push_transport must be one of {sorted(PUSH_TRANSPORTS)}, got {self.push_transport!r}"
            )
        for name in ("poll_interval", "liveness_interval", "liveness_timeout", "synthetic_interval"):
            if getattr(self, name) <= 0:
                raise FleetConfigError(f"{name} must be positive")
        if self.poll_limit < 1:
            raise FleetConfigError("poll_limit must be at least 1")
        if not 0 < self.reconnect_initial_delay <= self.reconnect_max_delay:
            raise FleetConfigError("reconnect delays must satisfy 0 < initial <= max")
        for name in (
            "synthetic_update_probability",
            "synthetic_servicing_probability",
            "synthetic_battery_drain_probability",
        ):
            if not 0.0 <= getattr(self, name) <= 1.0:
                raise FleetConfigError(f"{name} must be within [0, 1]")
        low, high = self.synthetic_fill_delta
        if low > high:
            raise FleetConfigError("synthetic_fill_delta lower bound exceeds upper bound")
        if self.push_transport == "mqtt" and not self.mqtt_host:
            raise FleetConfigError("push_transport 'mqtt' requires mqtt_host")

    @property
    def relay_topic(self) -> str:
        return self.mqtt_topic or f"binfleet/{self.backing_store.table}"

    @classmethod
    def from_env(cls, **overrides: Any) -> FleetConfig:
        """Create configuration from environment variables.

        Reads ``BINFLEET_SUPABASE_URL``, ``BINFLEET_SUPABASE_KEY`` and the
        optional ``BINFLEET_*`` tuning variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        FleetConfig
            Populated configuration.
        """
        env = os.environ

        store_kwargs: dict[str, str] = {}
        _ENV_STORE_MAP = {
            "BINFLEET_SUPABASE_URL": "url",
            "BINFLEET_SUPABASE_KEY": "api_key",
            "BINFLEET_SCHEMA": "schema",
            "BINFLEET_TABLE": "table",
        }
        for env_key, field_name in _ENV_STORE_MAP.items():
            val = env.get(env_key)
            if val is not None:
                store_kwargs[field_name] = val.strip()

        store_overrides = overrides.pop("backing_store", None)
        if isinstance(store_overrides, dict):
            store_kwargs.update(store_overrides)
        elif isinstance(store_overrides, BackingStoreConfig):
            store_kwargs = dataclasses.asdict(store_overrides)

        config_kwargs: dict[str, Any] = {"backing_store": BackingStoreConfig(**store_kwargs)}

        _ENV_STR_MAP = {
            "BINFLEET_PUSH_TRANSPORT": "push_transport",
            "BINFLEET_MQTT_HOST": "mqtt_host",
            "BINFLEET_MQTT_TOPIC": "mqtt_topic",
            "BINFLEET_MQTT_USERNAME": "mqtt_username",
            "BINFLEET_MQTT_PASSWORD": "mqtt_password",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val.strip()

        _ENV_FLOAT_MAP = {
            "BINFLEET_POLL_INTERVAL": "poll_interval",
            "BINFLEET_LIVENESS_INTERVAL": "liveness_interval",
            "BINFLEET_LIVENESS_TIMEOUT": "liveness_timeout",
            "BINFLEET_SYNTHETIC_INTERVAL": "synthetic_interval",
            "BINFLEET_SYNTHETIC_UPDATE_PROBABILITY": "synthetic_update_probability",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(val)

        _ENV_INT_MAP = {
            "BINFLEET_POLL_LIMIT": "poll_limit",
            "BINFLEET_MONITORED_DEVICE_ID": "monitored_device_id",
            "BINFLEET_MQTT_PORT": "mqtt_port",
            "BINFLEET_MQTT_KEEPALIVE": "mqtt_keepalive",
        }
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = int(val)

        if "synthetic_enabled" not in overrides:
            config_kwargs["synthetic_enabled"] = _env_bool(env.get("BINFLEET_SYNTHETIC_ENABLED"), True)
        if "probe_enabled" not in overrides:
            config_kwargs["probe_enabled"] = _env_bool(env.get("BINFLEET_PROBE_ENABLED"), False)
        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("BINFLEET_MQTT_TLS"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
