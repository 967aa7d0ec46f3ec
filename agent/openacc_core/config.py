"""
Paths, logging setup, settings load, device record load/save, safe_print.
"""

import os
import json
import sys
import logging
from dataclasses import dataclass, field, fields, replace
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from .constants import (
    API_BASE_URL, BLACKLIST_URL, API_TIMEOUT, SERVICE_FILE_PATH,
    PAIRING_HOST, PAIRING_PORT, MIN_SLEEP_SECONDS, MAX_SLEEP_SECONDS,
    SLICE_HEIGHT, THROTTLE_FACTOR, OCR_DPI, PUNCTUATION, LOG_BACKUP_DAYS,
)


# ─── Paths ───────────────────────────────────────────────────────
# The systemd unit runs us from the install directory; OPENACC_HOME
# overrides it for development and tests.

BASE_DIR = Path(os.environ.get("OPENACC_HOME") or Path(__file__).parent.parent)

CONFIG_FILE = BASE_DIR / "config.json"
DEVICE_FILE = BASE_DIR / ".device"
LOG_FILE = BASE_DIR / "output.log"
LOCK_FILE = BASE_DIR / "agent.lock"

_ENV_PREFIX = "OPENACC_"


# ─── Safe print (no crash when stdout is closed) ─────────────────

def safe_print(*args, **kwargs):
    try:
        print(*args, **kwargs)
    except Exception:
        pass


# ─── Logging ─────────────────────────────────────────────────────

_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

log = logging.getLogger("openacc")


def setup_logging(log_file=LOG_FILE, level=logging.INFO):
    """Attach the daily-rotating file handler and the console handler.

    Safe to call more than once; handlers are only added the first time.
    """
    if log.handlers:
        return log

    log.setLevel(level)
    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)

    try:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            str(log_file), when="midnight", backupCount=LOG_BACKUP_DAYS,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        log.addHandler(file_handler)
    except OSError as e:
        safe_print(f"Cannot open log file {log_file}: {e}")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    log.addHandler(console_handler)

    # urllib3 logs every retry at WARNING; keep its chatter out of INFO runs
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return log


# ─── Settings ────────────────────────────────────────────────────

@dataclass(frozen=True)
class MonitorConfig:
    """Timing and OCR tunables for MonitorLoop and ImageAnalyzer."""

    min_sleep_seconds: int = MIN_SLEEP_SECONDS
    max_sleep_seconds: int = MAX_SLEEP_SECONDS
    slice_height: int = SLICE_HEIGHT
    throttle_factor: int = THROTTLE_FACTOR
    punctuation: str = PUNCTUATION
    ocr_dpi: int = OCR_DPI

    def __post_init__(self):
        if self.slice_height <= 0:
            raise ValueError("slice_height must be positive")
        if self.min_sleep_seconds < 0 or self.throttle_factor < 0:
            raise ValueError("sleep bounds and throttle factor must be >= 0")
        if self.min_sleep_seconds > self.max_sleep_seconds:
            raise ValueError(
                f"min_sleep_seconds ({self.min_sleep_seconds}) exceeds "
                f"max_sleep_seconds ({self.max_sleep_seconds})"
            )


@dataclass(frozen=True)
class AgentSettings:
    api_base_url: str = API_BASE_URL
    blacklist_url: str = BLACKLIST_URL
    identity_api_key: str = ""
    device_file: Path = DEVICE_FILE
    service_file: Path = Path(SERVICE_FILE_PATH)
    pairing_host: str = PAIRING_HOST
    pairing_port: int = PAIRING_PORT
    pairing_mode: str = "web"
    request_timeout: float = API_TIMEOUT
    monitor: MonitorConfig = field(default_factory=MonitorConfig)

    def url(self, path):
        return self.api_base_url.rstrip("/") + path


def _coerce(raw, default):
    """Convert a config/env value to the type of the field's default."""
    if isinstance(default, Path):
        return Path(raw)
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return str(raw)


def load_config(config_file=CONFIG_FILE):
    """Load config from disk. Returns dict or None."""
    config_file = Path(config_file)
    if config_file.exists():
        try:
            with open(config_file, "r") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else None
        except (json.JSONDecodeError, IOError) as e:
            log.warning("Ignoring unreadable config %s: %s", config_file, e)
            return None
    return None


def load_settings(config_file=CONFIG_FILE, environ=None):
    """Build AgentSettings: defaults < config.json < OPENACC_* env vars."""
    environ = os.environ if environ is None else environ
    data = load_config(config_file) or {}

    monitor_defaults = MonitorConfig()
    monitor_values = {}
    for f in fields(MonitorConfig):
        raw = (data.get("monitor") or {}).get(f.name)
        env_raw = environ.get(_ENV_PREFIX + f.name.upper())
        if env_raw is not None:
            raw = env_raw
        if raw is not None:
            monitor_values[f.name] = _coerce(raw, getattr(monitor_defaults, f.name))
    monitor = replace(monitor_defaults, **monitor_values)

    defaults = AgentSettings()
    values = {"monitor": monitor}
    for f in fields(AgentSettings):
        if f.name == "monitor":
            continue
        raw = data.get(f.name)
        env_raw = environ.get(_ENV_PREFIX + f.name.upper())
        if env_raw is not None:
            raw = env_raw
        if raw is not None:
            values[f.name] = _coerce(raw, getattr(defaults, f.name))

    settings = replace(defaults, **values)
    if settings.pairing_mode not in ("web", "env"):
        raise ValueError(f"Unknown pairing_mode: {settings.pairing_mode!r}")
    return settings


# ─── Device record ───────────────────────────────────────────────

def load_device_record(path=DEVICE_FILE):
    """Load the persisted device record. Returns dict or None.

    A record that cannot be parsed is treated as absent (device re-pairs).
    """
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        log.warning("Device record %s unreadable (%s) — treating as absent", path, e)
        return None
    if not isinstance(data, dict):
        log.warning("Device record %s is not an object — treating as absent", path)
        return None
    return data


def save_device_record(record, path=DEVICE_FILE):
    """Write the device record; readable by the service user only."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w") as f:
        json.dump(record, f, indent=2)
    os.chmod(tmp, 0o600)
    os.replace(tmp, path)
    log.info("Device record saved to %s", path)


def remove_device_record(path=DEVICE_FILE):
    path = Path(path)
    try:
        path.unlink()
        log.info("Device record %s removed", path)
    except FileNotFoundError:
        pass
