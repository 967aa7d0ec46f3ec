"""
DeviceIdentity — the device's credentials and server-assigned identity.

One instance lives for the whole process. Every call that rotates the access
token or the tamper-exit token mutates it in place.
"""

import enum
from dataclasses import dataclass, asdict


class SessionState(enum.Enum):
    UNREGISTERED = "unregistered"
    REGISTERING = "registering"
    TAMPER_PENDING = "tamper_pending"   # Restored from disk, exit proof not yet checked
    ACTIVE = "active"
    EXITING = "exiting"


@dataclass
class DeviceIdentity:
    refresh_token: str = ""
    id_token: str = ""
    device_uuid: str = ""
    device_name: str = ""
    tamper_exit_token: str = ""

    @property
    def is_registered(self) -> bool:
        return bool(self.device_uuid)

    def to_record(self, include_tamper_exit_token=False):
        """
        On-disk form. The access token is never written (it is refreshed on
        load), and the tamper-exit token only when explicitly requested so
        the exit proof cannot be replayed from a running device's file.
        """
        record = asdict(self)
        record["id_token"] = ""
        if not include_tamper_exit_token:
            record["tamper_exit_token"] = ""
        return record

    @classmethod
    def from_record(cls, record):
        return cls(
            refresh_token=str(record.get("refresh_token") or ""),
            id_token="",
            device_uuid=str(record.get("device_uuid") or ""),
            device_name=str(record.get("device_name") or ""),
            tamper_exit_token=str(record.get("tamper_exit_token") or ""),
        )

    def __repr__(self):
        # Secrets stay out of logs and tracebacks
        return (
            f"DeviceIdentity(device_uuid={self.device_uuid!r}, "
            f"device_name={self.device_name!r}, "
            f"has_refresh_token={bool(self.refresh_token)}, "
            f"has_tamper_exit_token={bool(self.tamper_exit_token)})"
        )
