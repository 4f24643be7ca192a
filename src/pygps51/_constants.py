"""Internal constants shared across the library."""

API_URL = "https://api.gps51.com/openapi"
USER_AGENT = "pygps51"
DEFAULT_SERVER_ID = "1"

#: Upstream ``status`` value for a successful call.
STATUS_OK = 0

# ------------------------------------------------------------------
# Upstream error codes
# ------------------------------------------------------------------

#: 8902 IP limit, 9903 token expired, 9904 parameter error. The vendor
#: uses all three under burst load, so they are treated as transient.
RATE_LIMIT_ERROR_CODES: frozenset[int] = frozenset({8902, 9903, 9904})
#: Token rejected outright; retrying with the same token cannot succeed.
AUTH_ERROR_CODES: frozenset[int] = frozenset({9906})

# ------------------------------------------------------------------
# Rate limiting (milliseconds)
# ------------------------------------------------------------------

MAX_BURST_CALLS = 5
BURST_WINDOW_MS = 1_000
MIN_DELAY_MS = 200
MAX_RETRIES = 3
INITIAL_RETRY_DELAY_MS = 1_000
MAX_RETRY_DELAY_MS = 30_000
BACKOFF_MULTIPLIER = 2.0
RATE_LIMIT_STATE_KEY = "gps51_rate_limit_state"
TOKEN_KEY = "gps_token"

# ------------------------------------------------------------------
# Telemetry heuristics
#
# Empirically tuned against GPS51 fleets. Keep them named so they can be
# re-validated against real data without hunting through the code.
# ------------------------------------------------------------------

#: Speeds above this are assumed to be metres/hour.
SPEED_UNIT_CUTOFF = 200.0
#: GPS drift floor, km/h.
SPEED_NOISE_FLOOR_KMH = 3.0
SPEED_MAX_KMH = 300.0

IGNITION_CONFIDENCE_GATE = 0.5
IGNITION_BASE_BIT_WEIGHT = 0.6
IGNITION_EXTENDED_BIT_WEIGHT = 0.2
IGNITION_SPEED_WEIGHT = 0.2
IGNITION_STRING_CONFIDENCE = 0.9
IGNITION_MOTION_SPEED_KMH = 5.0
IGNITION_MOTION_SPEED_WEIGHT = 0.4
IGNITION_MOVING_FLAG_WEIGHT = 0.3
IGNITION_MULTI_SIGNAL_THRESHOLD = 0.6
IGNITION_MULTI_SIGNAL_CONFIDENCE = 0.7
IGNITION_SINGLE_SIGNAL_CONFIDENCE = 0.3

#: Ten minutes.
DEFAULT_OFFLINE_THRESHOLD_MS = 600_000
#: GMT+8, the vendor's wall clock for naive timestamp strings.
VENDOR_UTC_OFFSET_HOURS = 8
#: Clock-skew allowance for device timestamps in the future.
MAX_FUTURE_SKEW_S = 300

# ------------------------------------------------------------------
# Trip segmentation
# ------------------------------------------------------------------

#: A single step longer than this is a GPS jump, not travel.
MAX_STEP_DISTANCE_KM = 10.0
#: Per-step speed estimates outside (0, MAX_VALID_SPEED_KMH) are ignored.
MAX_VALID_SPEED_KMH = 200.0
MAX_LOOKBACK_HOURS = 720
