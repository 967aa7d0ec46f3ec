"""
Identity provider client — exchanges the refresh credential for an ID token.

Does not retry: callers own the retry policy (api.py retries a request once
after a refresh; startup failures are left to the service manager's restart).
"""

import time

import requests

from .config import log
from .constants import IDENTITY_TOKEN_URL, API_TIMEOUT
from .errors import AuthError


class IdentityClient:
    """Secure-token REST client for the identity provider."""

    def __init__(self, api_key, session, token_url=IDENTITY_TOKEN_URL, timeout=API_TIMEOUT):
        self._api_key = api_key
        self._session = session
        self._token_url = token_url
        self._timeout = timeout

    def refresh(self, refresh_token: str) -> str:
        """Return a fresh ID token for ``refresh_token`` or raise AuthError."""
        if not self._api_key:
            raise AuthError("No identity API key configured (OPENACC_IDENTITY_API_KEY)")
        if not refresh_token:
            raise AuthError("Cannot refresh: device has no refresh token")

        start = time.monotonic()
        try:
            resp = self._session.post(
                self._token_url,
                params={"key": self._api_key},
                data={"grant_type": "refresh_token", "refresh_token": refresh_token},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise AuthError(f"Token refresh network error: {e}") from e

        elapsed = time.monotonic() - start
        if resp.status_code != 200:
            log.error("Token refresh failed: HTTP %d after %.1fs — %s",
                      resp.status_code, elapsed, resp.text[:200])
            raise AuthError(f"Token refresh rejected: HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise AuthError("Token refresh returned invalid JSON") from e
        id_token = data.get("id_token") if isinstance(data, dict) else None
        if not id_token:
            raise AuthError("Token refresh response has no id_token")

        log.info("ID token refreshed (%.1fs)", elapsed)
        return id_token
