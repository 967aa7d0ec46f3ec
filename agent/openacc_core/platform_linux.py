"""
Linux-specific functionality:
  - System shutdown detection (runlevel / systemctl)
  - Single instance enforcement (fcntl lock file)
"""

import fcntl
import os
import subprocess

from .config import log, LOCK_FILE


# ─── Shutdown detection ─────────────────────────────────────────

def _run(cmd):
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=10)
    except (OSError, subprocess.TimeoutExpired) as e:
        log.warning("%s failed: %s", cmd[0], e)
        return ""
    return result.stdout.strip()


def is_shutdown_in_progress():
    """
    True when the machine itself is going down (runlevel 0 or systemd
    "stopping"), as opposed to someone stopping the service by hand.
    """
    runlevel = _run(["runlevel"]).split()
    if len(runlevel) == 2 and runlevel[1] == "0":
        log.info("runlevel reports shutdown (%s)", " ".join(runlevel))
        return True

    system_state = _run(["systemctl", "is-system-running"])
    if system_state == "stopping":
        log.info("systemd reports system state 'stopping'")
        return True
    return False


# ─── Single Instance Lock ────────────────────────────────────────

_instance_lock = None


def ensure_single_instance(lock_file=LOCK_FILE):
    """Hold an exclusive lock on ``lock_file`` for the life of the process.

    Returns False if another instance already holds it.
    """
    global _instance_lock
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    handle = open(lock_file, "a+")
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        handle.close()
        log.info("Another instance is already running. Exiting.")
        return False

    handle.seek(0)
    handle.truncate()
    handle.write(str(os.getpid()))
    handle.flush()
    _instance_lock = handle
    return True
