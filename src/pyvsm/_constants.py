"""Internal constants shared across the library."""

from datetime import timedelta

SOLVER_BASE_URL = "https://lw.traxmate.io"
WIFI_SOLVE_PATH = "/api/v1/solve/loraWifi"
GNSS_SOLVE_PATH = "/api/v1/solve/gnss_lora_edge_singleframe"
ALMANAC_PATH = "/api/v1/almanac/full"

# ------------------------------------------------------------------
# LoRaWAN ports used for downlinks
# ------------------------------------------------------------------

STATUS_PORT = 15
COMMAND_PORT = 21

# ------------------------------------------------------------------
# Rule timing
# ------------------------------------------------------------------

#: Minimum spacing between assistance position updates.  At an assumed
#: ceiling of 300 km/h a device cannot move more than ~150 km in this time.
ASSISTANCE_INTERVAL = timedelta(minutes=30)

#: Assistance position is refreshed when either axis moved further than this.
ASSISTANCE_THRESHOLD_DEG = 0.1

MAX_ALMANAC_AGE = timedelta(days=30)
ALMANAC_DOWNLOAD_INTERVAL = timedelta(hours=12)

DEFAULT_CLOCK_DRIFT_THRESHOLD_S = 5.0
DEFAULT_ALMANAC_CACHE_TTL_S = 24 * 3600.0
DEFAULT_PACING_DELAY_S = 1.0

# ------------------------------------------------------------------
# Chunked almanac delivery
# ------------------------------------------------------------------

#: Bytes of each downlink left free for MAC commands.
FRAME_OVERHEAD = 6

#: Per-frame budgets below this make an almanac download pointless.
MIN_FRAME_BUDGET = 30

#: Devices whose DevEUI starts with this prefix run VSM firmware.
VSM_DEVEUI_PREFIX = "70B3D52C"

#: Downlink size assumed when the network does not report one.
THINGPARK_MAX_PAYLOAD_SIZE = 40
