"""
MonitorLoop — capture → analyze → report → randomized sleep, until cancelled.

Failure policy per cycle:
  - display enumeration fails      → skip capture + report, go to sleep
  - one display fails to capture   → log, continue with the next display
  - blacklist/report network error → log, cycle aborted, go to sleep
  - EntitlementError / CancelledError propagate to the runner
"""

import random
import time

from .analyzer import ImageAnalyzer
from .blacklist import build_blacklist, reset_counts, event_report
from .capture import ScreenCapturer
from .config import log, MonitorConfig
from .errors import AuthError, ImageError, NetworkError

# Recreate the HTTP session after this many failed cycles in a row
SESSION_RESET_AFTER = 2


class MonitorLoop:

    def __init__(self, api, identity, analyzer: ImageAnalyzer, cancel_token,
                 config=None, capturer_factory=ScreenCapturer, rng=None):
        self._api = api
        self._identity = identity
        self._analyzer = analyzer
        self._cancel_token = cancel_token
        self._config = config or MonitorConfig()
        self._capturer_factory = capturer_factory
        self._rng = rng or random.Random()
        self.blacklist = None

    # ── Blacklist ────────────────────────────────────────────

    def refresh_blacklist(self):
        self.blacklist = build_blacklist(self._api.fetch_blacklist(self._identity))
        log.info("Blacklist ready: %d keywords", len(self.blacklist))
        return self.blacklist

    # ── Main loop ────────────────────────────────────────────

    def run(self):
        """Run until the cancellation token is set; always ends in CancelledError."""
        log.info("Monitor loop started (sleep=%d-%ds, slice=%dpx)",
                 self._config.min_sleep_seconds, self._config.max_sleep_seconds,
                 self._config.slice_height)
        try:
            self.refresh_blacklist()
        except (NetworkError, AuthError) as e:
            log.warning("Initial blacklist fetch failed: %s — retrying next cycle", e)

        failures = 0
        while True:
            self._cancel_token.check()
            try:
                self.run_cycle()
                failures = 0
            except (NetworkError, AuthError) as e:
                failures += 1
                log.warning("Cycle aborted (%d in a row): %s", failures, e)
                if failures >= SESSION_RESET_AFTER:
                    self._api.reset_session()
            self.sleep_between_cycles()

    def run_cycle(self):
        """One capture/analyze/report pass. Returns the posted report, or None
        when the displays could not be enumerated."""
        start = time.monotonic()
        log.info("starting cycle")

        if self.blacklist is None:
            self.refresh_blacklist()
        reset_counts(self.blacklist)

        if not self.scan_displays():
            return None

        report = event_report(self.blacklist)
        for keyword, count in report.items():
            log.info("%s: count %d", keyword, count)
        self._api.post_event(self._identity, report)

        log.info("cycle done in %.1fs (%d keywords matched)",
                 time.monotonic() - start, len(report))
        return report

    def scan_displays(self):
        """Analyze every display in enumeration order. False if none could be listed."""
        try:
            with self._capturer_factory() as capturer:
                displays = capturer.displays()
                log.info("displays: %d", len(displays))
                for index, display in enumerate(displays):
                    self._scan_display(capturer, index, display)
                    self._cancel_token.check()
        except ImageError as e:
            log.warning("Display enumeration failed: %s — skipping capture", e)
            return False
        return True

    def _scan_display(self, capturer, index, display):
        start = time.monotonic()
        try:
            image = capturer.grab(display)
            self._analyzer.analyze(image, self.blacklist, self._cancel_token)
        except ImageError as e:
            log.warning("Display %d skipped: %s", index, e)
            return
        log.info("display %d analyzed in %.1fs", index, time.monotonic() - start)

    def sleep_between_cycles(self):
        seconds = self._rng.randint(self._config.min_sleep_seconds,
                                    self._config.max_sleep_seconds)
        log.info("sleeping %ds", seconds)
        self._cancel_token.sleep(seconds)
