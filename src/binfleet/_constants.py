"""Internal constants shared across the library."""

USER_AGENT = "binfleet/0.1"

DEFAULT_SCHEMA = "public"
DEFAULT_TABLE = "bin_updates"

# ------------------------------------------------------------------
# Fill-level status thresholds (percent)
# ------------------------------------------------------------------

WARNING_FILL_THRESHOLD = 50.0
CRITICAL_FILL_THRESHOLD = 80.0

PERCENT_MIN = 0.0
PERCENT_MAX = 100.0

# ------------------------------------------------------------------
# Fleet defaults
# ------------------------------------------------------------------

#: The one receptacle fitted with a physical sensor in the default fleet.
DEFAULT_MONITORED_DEVICE_ID = 1001

#: Device id used by end-to-end delivery probes; not part of the fleet.
PROBE_DEVICE_ID = 9999

# ------------------------------------------------------------------
# Realtime (Phoenix channel) protocol
# ------------------------------------------------------------------

REALTIME_PATH = "/realtime/v1/websocket"
REALTIME_PROTOCOL_VERSION = "1.0.0"
REALTIME_HEARTBEAT_SECONDS = 25.0
