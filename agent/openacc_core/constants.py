"""
Constants, endpoints, thresholds, and the required service-file directives.
"""

AGENT_VERSION = "0.3.0"
SERVICE_NAME = "open-accountability"

# ─── Remote service ──────────────────────────────────────────────
API_BASE_URL = "https://us-central1-openaccountability.cloudfunctions.net"
BLACKLIST_URL = API_BASE_URL + "/getBlacklist"
IDENTITY_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"

PATH_DEVICE = "/api/device"
PATH_SAFE_EXIT_ID = "/api/device/safe_exit_id"
PATH_EVENT = "/api/event"

API_TIMEOUT = 30               # Seconds per request (cloud function cold starts)

# Keyword tiers returned by the blacklist endpoint, highest severity first
BLACKLIST_TIERS = ("keywords_high", "keywords_mid", "keywords_low")

# ─── Monitoring defaults ─────────────────────────────────────────
MIN_SLEEP_SECONDS = 60 * 2     # Shortest pause between cycles
MAX_SLEEP_SECONDS = 60 * 5     # Longest pause between cycles
SLICE_HEIGHT = 512             # Rows per OCR call
THROTTLE_FACTOR = 10           # Pause after a slice = slice seconds × factor
OCR_DPI = 100
PUNCTUATION = "(),\".;:'"      # Replaced by spaces before tokenizing

# ─── Pairing ─────────────────────────────────────────────────────
PAIRING_HOST = "127.0.0.1"
PAIRING_PORT = 8000

# ─── Tamper check ────────────────────────────────────────────────
SERVICE_FILE_PATH = "/etc/systemd/system/" + SERVICE_NAME + ".service"
REQUIRED_RESTART = "Restart=always"
REQUIRED_RESTART_SEC = "RestartSec=30s"

# ─── Logging ─────────────────────────────────────────────────────
LOG_BACKUP_DAYS = 3
