"""
Shared pytest fixtures for the agent test suite.

Provides fake HTTP responses, a fake identity provider, a scripted OCR
engine and a fake screen capturer so tests run without network, display,
or Tesseract.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add agent/ to path
AGENT_DIR = Path(__file__).parent.parent / "agent"
sys.path.insert(0, str(AGENT_DIR))

# Import after path fix
from openacc_core.config import AgentSettings, MonitorConfig
from openacc_core.errors import AuthError
from openacc_core.listeners import CancellationToken


# ---------------------------------------------------------------------------
# HTTP fakes
# ---------------------------------------------------------------------------

class FakeResponse:

    def __init__(self, status_code=200, text="", json_data=None):
        self.status_code = status_code
        self.text = text
        self._json = json_data

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json


class FakeIdentityClient:
    """Returns token-1, token-2, ... on each refresh."""

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def refresh(self, refresh_token):
        self.calls.append(refresh_token)
        if self.fail:
            raise AuthError("identity provider unavailable")
        return f"token-{len(self.calls)}"


@pytest.fixture
def identity_client():
    return FakeIdentityClient()


@pytest.fixture
def fake_api():
    """ApiClient stand-in with happy-path defaults."""
    api = MagicMock()
    api.register_device.return_value = FakeResponse(200, "uuid-new\n")
    api.request_safe_exit_id.return_value = FakeResponse(200, "exit-123")
    api.check_safe_exit_id.return_value = FakeResponse(200, "ok")
    api.notify_offline.return_value = FakeResponse(200, "")
    api.fetch_blacklist.return_value = {
        "keywords_high": ["urgent"],
        "keywords_mid": ["ignore"],
        "keywords_low": [],
    }
    api.post_event.return_value = FakeResponse(200, "stored")
    return api


# ---------------------------------------------------------------------------
# Monitoring fakes
# ---------------------------------------------------------------------------

class ScriptedEngine:
    """OCR engine that returns queued texts in order, then ``default``."""

    def __init__(self, texts=(), default="", on_read=None):
        self.texts = list(texts)
        self.default = default
        self.on_read = on_read
        self.calls = 0

    def check(self):
        pass

    def read_text(self, tiff_bytes):
        assert tiff_bytes[:2] in (b"II", b"MM"), "slice must be TIFF encoded"
        self.calls += 1
        if self.on_read is not None:
            self.on_read(self.calls)
        if self.texts:
            return self.texts.pop(0)
        return self.default


class FakeCapturer:
    """Context-manager capturer over a fixed list of images.

    An entry that is an exception instance is raised on grab().
    """

    def __init__(self, frames, enumerate_error=None):
        self.frames = list(frames)
        self.enumerate_error = enumerate_error
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False

    def displays(self):
        if self.enumerate_error is not None:
            raise self.enumerate_error
        return list(range(len(self.frames)))

    def grab(self, display):
        frame = self.frames[display]
        if isinstance(frame, Exception):
            raise frame
        return frame


class RecordingToken(CancellationToken):
    """Cancellation token whose sleeps return immediately and are recorded."""

    def __init__(self):
        super().__init__()
        self.sleeps = []

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.check()


@pytest.fixture
def token():
    return RecordingToken()


@pytest.fixture
def fast_monitor_config():
    return MonitorConfig(min_sleep_seconds=0, max_sleep_seconds=0,
                         slice_height=512, throttle_factor=0)


@pytest.fixture
def settings(tmp_path):
    service_file = tmp_path / "open-accountability.service"
    service_file.write_text("[Service]\nRestart=always\nRestartSec=30s\n")
    return AgentSettings(
        api_base_url="https://api.test",
        blacklist_url="https://api.test/getBlacklist",
        identity_api_key="key",
        device_file=tmp_path / ".device",
        service_file=service_file,
        pairing_mode="env",
        request_timeout=5,
        monitor=MonitorConfig(min_sleep_seconds=0, max_sleep_seconds=0, throttle_factor=0),
    )
