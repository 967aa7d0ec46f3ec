"""
DeviceSession — owns the DeviceIdentity and its on-disk record.

  UNREGISTERED ─(record found)→ TAMPER_PENDING ─(exit proof ok)→ ACTIVE
        │                              └─(proof missing/bad)→ REGISTERING → ACTIVE
        └─(no record: pair)→ REGISTERING → ACTIVE
  ACTIVE ─exit()→ EXITING

An identity restored from disk is only resumed when it proves the previous run
ended through exit(forced=True). Anything else gets a fresh device UUID.
"""

from .config import log, load_device_record, save_device_record, remove_device_record
from .errors import AuthError
from .state import DeviceIdentity, SessionState


class DeviceSession:

    def __init__(self, api, identity_client, pairing, device_file):
        self._api = api
        self._identity_client = identity_client
        self._pairing = pairing
        self._device_file = device_file
        self.identity = DeviceIdentity()
        self.state = SessionState.UNREGISTERED

    # ── Startup ───────────────────────────────────────────────

    def restore_or_create(self):
        """Establish an ACTIVE identity: restore it, re-register it, or pair."""
        record = load_device_record(self._device_file)

        if record is not None:
            self.identity = DeviceIdentity.from_record(record)
            log.info("Restored device %s (%s)",
                     self.identity.device_uuid or "<none>", self.identity.device_name)
            self.identity.id_token = self._identity_client.refresh(self.identity.refresh_token)
            self.state = SessionState.TAMPER_PENDING

            if self.verify_tamper_exit_token():
                self.state = SessionState.ACTIVE
            else:
                log.warning("Previous run did not exit cleanly — registering a new device identity")
                self.register()
        else:
            log.info("No device record at %s — starting pairing", self._device_file)
            creds = self._pairing.obtain_credential()
            self.identity = DeviceIdentity(
                refresh_token=creds.refresh_token,
                device_name=creds.device_name,
            )
            self.register()

        self.negotiate_tamper_exit_token()
        self.persist(include_tamper_exit_token=False)
        return self.identity

    def register(self):
        """Refresh the ID token, then register a new device UUID with the server.

        Anything other than HTTP 200 is an AuthError; no internal retry.
        """
        self.state = SessionState.REGISTERING
        self.identity.id_token = self._identity_client.refresh(self.identity.refresh_token)

        resp = self._api.register_device(self.identity)
        if resp.status_code != 200:
            raise AuthError(
                f"Device registration failed: HTTP {resp.status_code} — {resp.text[:200]}"
            )
        device_uuid = resp.text.strip()
        if not device_uuid:
            raise AuthError("Device registration returned an empty device UUID")

        self.identity.device_uuid = device_uuid
        self.identity.tamper_exit_token = ""
        self.state = SessionState.ACTIVE
        log.info("Registered device %s as %r", device_uuid, self.identity.device_name)
        return device_uuid

    # ── Safe-exit handshake ──────────────────────────────────

    def negotiate_tamper_exit_token(self):
        """Ask the server for a one-time exit proof. Kept in memory only."""
        resp = self._api.request_safe_exit_id(self.identity)
        if not resp.ok:
            raise AuthError(f"Safe-exit id request failed: HTTP {resp.status_code}")
        token = resp.text.strip()
        if not token:
            raise AuthError("Server returned an empty safe-exit id")
        self.identity.tamper_exit_token = token
        log.info("Safe-exit id negotiated for device %s", self.identity.device_uuid)
        return token

    def verify_tamper_exit_token(self) -> bool:
        """True only if the restored exit proof matches the server's record."""
        if not self.identity.is_registered or not self.identity.tamper_exit_token:
            log.warning("Device record carries no safe-exit id — treating as unclean exit")
            return False

        resp = self._api.check_safe_exit_id(self.identity)
        if resp.ok:
            log.info("Safe-exit id verified for device %s", self.identity.device_uuid)
            return True
        log.warning("Safe-exit id mismatch for device %s (HTTP %d)",
                    self.identity.device_uuid, resp.status_code)
        return False

    # ── Persistence / shutdown ───────────────────────────────

    def persist(self, include_tamper_exit_token=False):
        save_device_record(
            self.identity.to_record(include_tamper_exit_token=include_tamper_exit_token),
            self._device_file,
        )

    def exit(self, forced):
        """
        forced=False → tell the server the device is going offline, delete the record.
        forced=True  → keep the record and write the exit proof into it so the
                       next start can resume this identity.
        """
        self.state = SessionState.EXITING
        if forced:
            log.info("Shutdown in progress — saving device record with safe-exit id")
            self.persist(include_tamper_exit_token=True)
        else:
            log.info("Service stopped outside system shutdown — signing device off")
            resp = self._api.notify_offline(self.identity)
            if not resp.ok:
                log.warning("Offline notification rejected: HTTP %d — %s",
                            resp.status_code, resp.text[:200])
            remove_device_record(self._device_file)
        log.info("Exiting program")
