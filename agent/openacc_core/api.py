"""
Server API calls — device registration, safe-exit handshake, blacklist, events.

Every call that needs identity goes through send_with_refresh(): send once,
and if the server says the ID token is stale, refresh it, write the new token
into the request body and send exactly one more time.

All functions are blocking and run on the main thread.
"""

import abc
import time
from dataclasses import dataclass, asdict, field
from typing import Dict, Optional

import requests

from .config import log
from .constants import (
    API_TIMEOUT, PATH_DEVICE, PATH_SAFE_EXIT_ID, PATH_EVENT, BLACKLIST_TIERS,
)
from .errors import EntitlementError, NetworkError
from . import http_client

HTTP_UNAUTHORIZED = 401
HTTP_PAYMENT_REQUIRED = 402


# ─── Request bodies ──────────────────────────────────────────────

class WithAccessToken(abc.ABC):
    """A JSON request body that carries the current ID token."""

    @abc.abstractmethod
    def set_access_token(self, token: str) -> None:
        ...

    def to_json(self) -> dict:
        return asdict(self)


@dataclass
class DeviceRegisterBody(WithAccessToken):
    id_token: str
    device_name: str

    def set_access_token(self, token):
        self.id_token = token


@dataclass
class DeviceBody(WithAccessToken):
    """Body for calls keyed by device only (safe-exit request, going offline)."""
    id_token: str
    device_uuid: str

    def set_access_token(self, token):
        self.id_token = token


@dataclass
class SafeExitCheckBody(WithAccessToken):
    id_token: str
    device_uuid: str
    safe_exit_id: str

    def set_access_token(self, token):
        self.id_token = token


@dataclass
class EventBody(WithAccessToken):
    id_token: str
    device_uuid: str
    event: Dict[str, int] = field(default_factory=dict)

    def set_access_token(self, token):
        self.id_token = token


# ─── Request-with-refresh protocol ───────────────────────────────

def _send(session, request, timeout):
    """Prepare and send ``request``; transport failures become NetworkError."""
    start = time.monotonic()
    try:
        resp = session.send(session.prepare_request(request), timeout=timeout)
    except requests.RequestException as e:
        elapsed = time.monotonic() - start
        log.warning("%s %s network error after %.1fs: %s",
                    request.method, request.url, elapsed, e)
        raise NetworkError(f"{request.method} {request.url} failed: {e}") from e
    log.info("%s %s → HTTP %d (%.1fs)",
             request.method, request.url, resp.status_code, time.monotonic() - start)
    return resp


def send_with_refresh(session, request, body: Optional[WithAccessToken], identity,
                      identity_client, timeout=API_TIMEOUT):
    """
    Send ``request`` with ``body`` as JSON, refreshing the ID token at most once.

      401 → refresh token, update body, resend once, return that response as-is
      402 → EntitlementError (never retried)
      else → response returned unchanged for the caller to interpret
    """
    if body is not None:
        request.json = body.to_json()

    resp = _send(session, request, timeout)

    if resp.status_code == HTTP_UNAUTHORIZED:
        log.info("ID token rejected by %s — refreshing and retrying once", request.url)
        identity.id_token = identity_client.refresh(identity.refresh_token)
        if body is not None:
            body.set_access_token(identity.id_token)
            request.json = body.to_json()
        return _send(session, request, timeout)

    if resp.status_code == HTTP_PAYMENT_REQUIRED:
        log.error("%s %s → HTTP 402: account has no active subscription",
                  request.method, request.url)
        raise EntitlementError("No active subscription for this account")

    return resp


# ─── Endpoint client ─────────────────────────────────────────────

class ApiClient:
    """One method per remote endpoint. Holds the pooled HTTP session."""

    def __init__(self, settings, identity_client, session=None):
        self._settings = settings
        self._identity_client = identity_client
        self.session = session if session is not None else http_client.create_session()

    def reset_session(self):
        self.session = http_client.reset_session(self.session)

    def _call(self, method, url, identity, body=None):
        request = requests.Request(
            method, url,
            headers={"Authorization": f"Bearer {identity.refresh_token}"},
        )
        return send_with_refresh(
            self.session, request, body, identity, self._identity_client,
            timeout=self._settings.request_timeout,
        )

    def register_device(self, identity):
        body = DeviceRegisterBody(id_token=identity.id_token, device_name=identity.device_name)
        return self._call("POST", self._settings.url(PATH_DEVICE), identity, body)

    def request_safe_exit_id(self, identity):
        body = DeviceBody(id_token=identity.id_token, device_uuid=identity.device_uuid)
        return self._call("POST", self._settings.url(PATH_SAFE_EXIT_ID), identity, body)

    def check_safe_exit_id(self, identity):
        body = SafeExitCheckBody(
            id_token=identity.id_token,
            device_uuid=identity.device_uuid,
            safe_exit_id=identity.tamper_exit_token,
        )
        return self._call("PATCH", self._settings.url(PATH_SAFE_EXIT_ID), identity, body)

    def notify_offline(self, identity):
        body = DeviceBody(id_token=identity.id_token, device_uuid=identity.device_uuid)
        return self._call("PATCH", self._settings.url(PATH_DEVICE), identity, body)

    def fetch_blacklist(self, identity):
        """Return the raw keyword tiers. Raises NetworkError on any bad response."""
        url = self._settings.blacklist_url
        resp = self._call("GET", url, identity)
        if not resp.ok:
            raise NetworkError(f"Blacklist fetch failed: HTTP {resp.status_code} — {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise NetworkError("Blacklist response is not JSON") from e
        if not isinstance(data, dict):
            raise NetworkError("Blacklist response is not a JSON object")
        log.info("Blacklist fetched (%s)", ", ".join(
            f"{tier}={len(data.get(tier) or [])}" for tier in BLACKLIST_TIERS
        ))
        return data

    def post_event(self, identity, event):
        body = EventBody(id_token=identity.id_token, device_uuid=identity.device_uuid,
                         event=dict(event))
        resp = self._call("POST", self._settings.url(PATH_EVENT), identity, body)
        if not resp.ok:
            raise NetworkError(f"Event post failed: HTTP {resp.status_code} — {resp.text[:200]}")
        log.info("Event posted (%d keywords): %s", len(event), resp.text[:200])
        return resp
