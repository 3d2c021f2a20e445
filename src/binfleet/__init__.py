"""binfleet - Async telemetry reconciliation for a fleet of smart waste receptacles."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("binfleet")
except PackageNotFoundError:
    __version__ = "0+local"
from binfleet.config import BackingStoreConfig, FleetConfig
from binfleet.engine import FleetEngine
from binfleet.exceptions import (
    ChangeStreamError,
    FleetApiError,
    FleetConfigError,
    FleetError,
    FleetTransportError,
    MalformedRecordError,
)
from binfleet.models import (
    Device,
    DeviceCategory,
    DeviceStatus,
    FleetStats,
    Location,
    TelemetryRow,
)
from binfleet.state.connection import ConnectionState
from binfleet.state.events import NormalizedUpdate, UpdateSource
from binfleet.state.store import FleetSnapshot

__all__ = [
    "BackingStoreConfig",
    "ChangeStreamError",
    "ConnectionState",
    "Device",
    "DeviceCategory",
    "DeviceStatus",
    "FleetApiError",
    "FleetConfig",
    "FleetConfigError",
    "FleetEngine",
    "FleetError",
    "FleetSnapshot",
    "FleetStats",
    "FleetTransportError",
    "Location",
    "MalformedRecordError",
    "NormalizedUpdate",
    "TelemetryRow",
    "UpdateSource",
    "__version__",
]
