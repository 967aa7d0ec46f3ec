"""
Tests for DeviceSession: pairing, restore, re-registration, exit paths.
"""

import json
import os
from unittest.mock import MagicMock

import pytest

from conftest import FakeResponse, FakeIdentityClient
from openacc_core.enrollment import PairingCredentials
from openacc_core.errors import AuthError
from openacc_core.session import DeviceSession
from openacc_core.state import SessionState


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def write_record(path, **overrides):
    record = {
        "refresh_token": "refresh-abc",
        "id_token": "",
        "device_uuid": "uuid-old",
        "device_name": "laptop",
        "tamper_exit_token": "",
    }
    record.update(overrides)
    path.write_text(json.dumps(record))
    return record


def read_record(path):
    return json.loads(path.read_text())


@pytest.fixture
def pairing():
    provider = MagicMock()
    provider.obtain_credential.return_value = PairingCredentials("refresh-paired", "desk")
    return provider


@pytest.fixture
def device_file(tmp_path):
    return tmp_path / ".device"


@pytest.fixture
def session(fake_api, identity_client, pairing, device_file):
    return DeviceSession(fake_api, identity_client, pairing, device_file)


# ---------------------------------------------------------------------------
# First start (pairing)
# ---------------------------------------------------------------------------

class TestPairing:

    def test_no_record_pairs_registers_and_persists(self, session, fake_api, pairing, device_file):
        identity = session.restore_or_create()

        pairing.obtain_credential.assert_called_once()
        assert session.state is SessionState.ACTIVE
        assert identity.refresh_token == "refresh-paired"
        assert identity.device_name == "desk"
        assert identity.device_uuid == "uuid-new"
        assert identity.tamper_exit_token == "exit-123"

        on_disk = read_record(device_file)
        assert on_disk["device_uuid"] == "uuid-new"
        assert on_disk["refresh_token"] == "refresh-paired"
        assert on_disk["tamper_exit_token"] == ""
        assert on_disk["id_token"] == ""
        fake_api.check_safe_exit_id.assert_not_called()

    def test_unreadable_record_is_treated_as_absent(self, session, pairing, device_file):
        device_file.write_text("{not json")
        session.restore_or_create()
        pairing.obtain_credential.assert_called_once()

    def test_record_file_is_private(self, session, device_file):
        session.restore_or_create()
        assert (os.stat(device_file).st_mode & 0o777) == 0o600


# ---------------------------------------------------------------------------
# Restart (restore)
# ---------------------------------------------------------------------------

class TestRestore:

    def test_record_without_exit_token_forces_new_identity(self, session, fake_api, device_file, pairing):
        write_record(device_file)

        identity = session.restore_or_create()

        pairing.obtain_credential.assert_not_called()
        fake_api.check_safe_exit_id.assert_not_called()
        fake_api.register_device.assert_called_once()
        assert identity.device_uuid == "uuid-new"
        assert identity.device_uuid != "uuid-old"
        assert identity.refresh_token == "refresh-abc"

    def test_verified_exit_token_resumes_old_identity(self, session, fake_api, device_file):
        write_record(device_file, tamper_exit_token="exit-prev")

        identity = session.restore_or_create()

        fake_api.check_safe_exit_id.assert_called_once()
        fake_api.register_device.assert_not_called()
        assert identity.device_uuid == "uuid-old"
        # Fresh proof for this run; the file no longer carries any
        assert identity.tamper_exit_token == "exit-123"
        assert read_record(device_file)["tamper_exit_token"] == ""

    def test_exit_token_without_device_uuid_is_not_checked(self, session, fake_api, device_file):
        write_record(device_file, device_uuid="", tamper_exit_token="exit-prev")

        identity = session.restore_or_create()

        fake_api.check_safe_exit_id.assert_not_called()
        fake_api.register_device.assert_called_once()
        assert identity.is_registered
        assert identity.device_uuid == "uuid-new"

    def test_mismatched_exit_token_forces_new_identity(self, session, fake_api, device_file):
        write_record(device_file, tamper_exit_token="exit-forged")
        fake_api.check_safe_exit_id.return_value = FakeResponse(403, "mismatch")

        identity = session.restore_or_create()

        fake_api.register_device.assert_called_once()
        assert identity.device_uuid == "uuid-new"

    def test_restore_always_refreshes_access_token(self, session, identity_client, device_file):
        write_record(device_file, id_token="left-over", tamper_exit_token="exit-prev")
        identity = session.restore_or_create()
        assert identity_client.calls == ["refresh-abc"]
        assert identity.id_token == "token-1"

    def test_refresh_failure_on_restore_is_fatal(self, fake_api, pairing, device_file):
        write_record(device_file, tamper_exit_token="exit-prev")
        session = DeviceSession(fake_api, FakeIdentityClient(fail=True), pairing, device_file)
        with pytest.raises(AuthError):
            session.restore_or_create()
        # Record left untouched for the next attempt
        assert read_record(device_file)["tamper_exit_token"] == "exit-prev"


# ---------------------------------------------------------------------------
# Registration / handshake
# ---------------------------------------------------------------------------

class TestRegister:

    @pytest.mark.parametrize("response", [FakeResponse(500, "boom"), FakeResponse(403, ""),
                                          FakeResponse(200, "   ")])
    def test_registration_failure_is_auth_error(self, session, fake_api, response):
        session.identity.refresh_token = "refresh-abc"
        fake_api.register_device.return_value = response
        with pytest.raises(AuthError):
            session.register()
        assert session.state is SessionState.REGISTERING
        assert fake_api.register_device.call_count == 1

    def test_register_refreshes_before_calling_server(self, session, fake_api, identity_client):
        session.identity.refresh_token = "refresh-abc"

        def check_token(identity):
            assert identity.id_token == "token-1"
            return FakeResponse(200, "uuid-7")

        fake_api.register_device.side_effect = check_token
        assert session.register() == "uuid-7"
        assert session.state is SessionState.ACTIVE

    def test_negotiate_keeps_token_in_memory_only(self, session, fake_api, device_file):
        session.identity.device_uuid = "uuid-1"
        assert session.negotiate_tamper_exit_token() == "exit-123"
        assert not device_file.exists()

    def test_negotiate_failure_is_auth_error(self, session, fake_api):
        fake_api.request_safe_exit_id.return_value = FakeResponse(500, "")
        with pytest.raises(AuthError):
            session.negotiate_tamper_exit_token()


# ---------------------------------------------------------------------------
# Persist / exit
# ---------------------------------------------------------------------------

class TestExit:

    def test_persist_omits_exit_token_by_default(self, session, device_file):
        session.restore_or_create()
        session.persist()
        assert read_record(device_file)["tamper_exit_token"] == ""
        session.persist(include_tamper_exit_token=True)
        assert read_record(device_file)["tamper_exit_token"] == "exit-123"

    def test_forced_exit_keeps_record_with_exit_token(self, session, fake_api, device_file):
        session.restore_or_create()

        session.exit(forced=True)

        assert session.state is SessionState.EXITING
        record = read_record(device_file)
        assert record["tamper_exit_token"] == "exit-123"
        assert record["device_uuid"] == "uuid-new"
        fake_api.notify_offline.assert_not_called()

    def test_unforced_exit_notifies_and_deletes_record(self, session, fake_api, device_file):
        session.restore_or_create()

        session.exit(forced=False)

        fake_api.notify_offline.assert_called_once_with(session.identity)
        assert not device_file.exists()

    def test_forced_exit_then_restart_resumes_identity(self, fake_api, identity_client, pairing, device_file):
        first = DeviceSession(fake_api, identity_client, pairing, device_file)
        first.restore_or_create()
        first.exit(forced=True)

        fake_api.register_device.reset_mock()
        second = DeviceSession(fake_api, identity_client, pairing, device_file)
        identity = second.restore_or_create()

        assert identity.device_uuid == "uuid-new"
        fake_api.register_device.assert_not_called()
        sent_identity = fake_api.check_safe_exit_id.call_args.args[0]
        assert sent_identity is second.identity
