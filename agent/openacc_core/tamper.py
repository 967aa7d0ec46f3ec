"""
TamperGuard — checks that the systemd unit still forces restarts.

The unit must end up with ``Restart=always`` and ``RestartSec=30s``. Later
lines override earlier ones, so only the last ``Restart=`` and the last
``RestartSec=`` line count.
"""

from pathlib import Path

from .config import log
from .constants import REQUIRED_RESTART, REQUIRED_RESTART_SEC
from .errors import TamperError


def _key(directive):
    return directive.split("=", 1)[0] + "="


def service_descriptor_ok(contents: str) -> bool:
    """True iff the last Restart= is Restart=always and the last RestartSec= is RestartSec=30s."""
    last = {_key(REQUIRED_RESTART): None, _key(REQUIRED_RESTART_SEC): None}
    for raw in contents.splitlines():
        line = raw.strip()
        for key in last:
            if line.startswith(key):
                last[key] = line
    return (last[_key(REQUIRED_RESTART)] == REQUIRED_RESTART
            and last[_key(REQUIRED_RESTART_SEC)] == REQUIRED_RESTART_SEC)


class TamperGuard:

    def __init__(self, session, service_file):
        self._session = session
        self._service_file = Path(service_file)

    def verify_service_descriptor(self):
        """Raise TamperError (after signing the device off) if the unit was altered."""
        try:
            contents = self._service_file.read_text(encoding="utf-8")
        except OSError as e:
            log.error("Cannot read service file %s: %s", self._service_file, e)
            contents = None

        if contents is not None and service_descriptor_ok(contents):
            log.info("Service file %s verified", self._service_file)
            return

        log.error("Service file %s has been tampered with — terminating device",
                  self._service_file)
        try:
            self._session.exit(forced=False)
        except Exception as e:
            log.error("Device sign-off after tamper detection failed: %s", e)
        raise TamperError(f"Service file {self._service_file} has been tampered with")
