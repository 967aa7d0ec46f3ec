"""
Device pairing: one-time handshake that yields a refresh token and device name.

  WebPairingProvider → local sign-in page; blocks until the page posts /login
  EnvPairingProvider → OPENACC_REFRESH_TOKEN / OPENACC_DEVICE_NAME (headless)
"""

import abc
import json
import os
import platform
import queue
import threading
import webbrowser
from collections import namedtuple
from http.server import BaseHTTPRequestHandler, HTTPServer

from .config import log
from .constants import PAIRING_HOST, PAIRING_PORT
from .errors import AuthError, CancelledError

PairingCredentials = namedtuple("PairingCredentials", ["refresh_token", "device_name"])


class PairingProvider(abc.ABC):

    @abc.abstractmethod
    def obtain_credential(self) -> PairingCredentials:
        """Block until the user has paired this device."""


# ─── Headless pairing ────────────────────────────────────────────

class EnvPairingProvider(PairingProvider):

    def __init__(self, environ=None):
        self._environ = os.environ if environ is None else environ

    def obtain_credential(self):
        refresh_token = (self._environ.get("OPENACC_REFRESH_TOKEN") or "").strip()
        if not refresh_token:
            raise AuthError("OPENACC_REFRESH_TOKEN is not set — cannot pair headless")
        device_name = (self._environ.get("OPENACC_DEVICE_NAME") or platform.node()).strip()
        log.info("Pairing from environment as %r", device_name)
        return PairingCredentials(refresh_token, device_name)


# ─── Web pairing ─────────────────────────────────────────────────

_PAGE = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>Open Accountability — Pair this device</title></head>
<body>
  <h2>Pair this device</h2>
  <p>Sign in on the accountability site, then paste the pairing token below.</p>
  <form id="pair">
    <label>Device name <input name="device_name" required></label><br>
    <label>Pairing token <input name="refresh_token" required></label><br>
    <button type="submit">Pair</button>
  </form>
  <p id="status"></p>
  <script>
    document.getElementById("pair").addEventListener("submit", async (ev) => {
      ev.preventDefault();
      const form = new FormData(ev.target);
      const resp = await fetch("/login", {
        method: "POST",
        headers: {"Content-Type": "application/json"},
        body: JSON.stringify(Object.fromEntries(form)),
      });
      document.getElementById("status").textContent = await resp.text();
    });
  </script>
</body>
</html>
"""


def _make_handler(inbox):

    class PairingHandler(BaseHTTPRequestHandler):

        def log_message(self, fmt, *args):
            log.debug("pairing server: " + fmt, *args)

        def _reply(self, code, text, content_type="text/plain; charset=utf-8"):
            payload = text.encode("utf-8")
            self.send_response(code)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        def do_GET(self):
            if self.path in ("/", "/index.html"):
                self._reply(200, _PAGE, "text/html; charset=utf-8")
            else:
                self._reply(404, "Not found")

        def do_POST(self):
            if self.path != "/login":
                self._reply(404, "Not found")
                return
            try:
                length = int(self.headers.get("Content-Length") or 0)
                data = json.loads(self.rfile.read(length) or b"{}")
                refresh_token = str(data.get("refresh_token") or "").strip()
                device_name = str(data.get("device_name") or "").strip()
            except (ValueError, AttributeError):
                self._reply(400, "Invalid JSON")
                return
            if not refresh_token or not device_name:
                self._reply(400, "refresh_token and device_name are required")
                return
            try:
                inbox.put_nowait(PairingCredentials(refresh_token, device_name))
            except queue.Full:
                self._reply(409, "This device is already being paired")
                return
            self._reply(200, f"Device {device_name!r} paired. You can close this page.")

    return PairingHandler


class WebPairingProvider(PairingProvider):
    """Serve the pairing page on localhost and wait for one submission."""

    def __init__(self, host=PAIRING_HOST, port=PAIRING_PORT, cancel_token=None,
                 open_browser=True):
        self._host = host
        self._port = port
        self._cancel_token = cancel_token
        self._open_browser = open_browser
        self.server_address = None

    def obtain_credential(self):
        inbox = queue.Queue(maxsize=1)
        try:
            server = HTTPServer((self._host, self._port), _make_handler(inbox))
        except OSError as e:
            raise AuthError(f"Cannot start pairing server on {self._host}:{self._port}: {e}") from e
        self.server_address = server.server_address
        url = f"http://{self._host}:{server.server_address[1]}/"
        thread = threading.Thread(target=server.serve_forever, name="pairing-server", daemon=True)
        thread.start()
        log.info("Pairing page available at %s — waiting for sign-in", url)

        try:
            if self._open_browser:
                try:
                    webbrowser.open(url)
                except webbrowser.Error as e:
                    log.warning("Could not open browser (%s) — open %s manually", e, url)

            while True:
                try:
                    creds = inbox.get(timeout=1)
                    break
                except queue.Empty:
                    if self._cancel_token is not None and self._cancel_token.is_set():
                        raise CancelledError("Pairing cancelled")
        finally:
            server.shutdown()
            server.server_close()
            thread.join(timeout=5)

        log.info("Pairing received for device %r", creds.device_name)
        return creds
