"""
Cancellation token + SIGINT/SIGTERM listener.

The token is the only state shared between the signal handler and the main
loop. It only ever goes from "running" to "cancelled".
"""

import signal
import threading

from .config import log
from .errors import CancelledError


class CancellationToken:
    """Monotonic cancellation flag with an interruptible one-second sleep."""

    def __init__(self):
        self._event = threading.Event()
        self._reason = None
        self._reported = False

    def cancel(self, reason=None):
        """Set the flag. Safe to call from a signal handler (no I/O)."""
        if self._reason is None:
            self._reason = reason
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def check(self):
        """Raise CancelledError if cancellation has been requested."""
        if self._event.is_set():
            if not self._reported:
                self._reported = True
                log.info("Cancellation requested (%s) — stopping after the current step",
                         self._reason or "cancel")
            raise CancelledError("Cancellation requested")

    def sleep(self, seconds):
        """
        Sleep ``seconds`` in one-second steps, checking the flag at each step.
        Wakes as soon as the flag is set and raises CancelledError.
        """
        for _ in range(int(seconds)):
            self.check()
            if self._event.wait(1):
                break
        self.check()


def install_signal_listeners(token, signals=(signal.SIGINT, signal.SIGTERM)):
    """Route ``signals`` to ``token.cancel()``. Returns the previous handlers.

    Must be called from the main thread.
    """

    def on_signal(signum, frame):
        # No logging here: the handler may interrupt a write to the same stream
        token.cancel(signal.Signals(signum).name)

    previous = {}
    for sig in signals:
        previous[sig] = signal.getsignal(sig)
        signal.signal(sig, on_signal)
    log.info("Signal listeners installed (%s)",
             ", ".join(signal.Signals(s).name for s in signals))
    return previous


def restore_signal_listeners(previous):
    for sig, handler in previous.items():
        signal.signal(sig, handler)
