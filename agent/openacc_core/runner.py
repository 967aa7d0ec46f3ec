"""
Entry point: wiring, startup sequence, and exit-path selection.

  startup  → restore/pair identity → tamper check → monitor loop
  SIGTERM during system shutdown → exit(forced=True)   (identity kept)
  SIGTERM/SIGINT otherwise       → exit(forced=False)  (device signed off)
"""

import sys

from .constants import AGENT_VERSION, SERVICE_NAME
from .config import log, safe_print, setup_logging, load_settings
from . import http_client
from .analyzer import ImageAnalyzer, TesseractEngine
from .api import ApiClient
from .capture import ScreenCapturer
from .enrollment import EnvPairingProvider, WebPairingProvider
from .errors import AgentError, CancelledError, TamperError
from .identity import IdentityClient
from .listeners import CancellationToken, install_signal_listeners
from .monitor import MonitorLoop
from .platform_linux import ensure_single_instance, is_shutdown_in_progress
from .session import DeviceSession
from .state import SessionState
from .tamper import TamperGuard

EXIT_OK = 0
EXIT_FATAL = 1


def build_pairing(settings, cancel_token):
    if settings.pairing_mode == "env":
        return EnvPairingProvider()
    return WebPairingProvider(settings.pairing_host, settings.pairing_port, cancel_token)


def _settle_after_failure(session):
    """Best-effort exit after a fatal error: leave the record in its at-rest form."""
    if session.state is not SessionState.ACTIVE:
        return
    try:
        session.persist(include_tamper_exit_token=False)
    except OSError as e:
        log.error("Could not save device record: %s", e)


def run(settings, session, api, engine, cancel_token,
        capturer_factory=ScreenCapturer, shutdown_probe=is_shutdown_in_progress):
    """Run the agent to completion. Returns the process exit code."""
    try:
        engine.check()
        session.restore_or_create()
        TamperGuard(session, settings.service_file).verify_service_descriptor()
    except CancelledError:
        log.info("Cancelled during startup — nothing to sign off")
        return EXIT_OK
    except TamperError as e:
        log.error("FATAL: %s", e)
        return EXIT_FATAL
    except (AgentError, OSError) as e:
        log.error("FATAL during startup (%s): %s", type(e).__name__, e)
        _settle_after_failure(session)
        return EXIT_FATAL

    log.info("Authenticated as device %s. About to start.", session.identity.device_uuid)

    analyzer = ImageAnalyzer(engine, settings.monitor)
    loop = MonitorLoop(api, session.identity, analyzer, cancel_token,
                       config=settings.monitor, capturer_factory=capturer_factory)
    try:
        loop.run()
    except CancelledError:
        forced = shutdown_probe()
        try:
            session.exit(forced=forced)
        except (AgentError, OSError) as e:
            log.error("Exit handshake failed: %s", e)
            return EXIT_FATAL
        return EXIT_OK
    except AgentError as e:
        log.error("FATAL in monitor loop (%s): %s", type(e).__name__, e)
        _settle_after_failure(session)
        return EXIT_FATAL
    return EXIT_OK


def main():
    """Primary agent entry point."""
    setup_logging()
    safe_print(f"{SERVICE_NAME} agent v{AGENT_VERSION}")
    safe_print()

    if not ensure_single_instance():
        safe_print("Already running. Exiting.")
        sys.exit(EXIT_OK)

    try:
        settings = load_settings()
    except ValueError as e:
        log.error("Invalid configuration: %s", e)
        sys.exit(EXIT_FATAL)

    cancel_token = CancellationToken()
    install_signal_listeners(cancel_token)

    identity_client = IdentityClient(settings.identity_api_key, http_client.create_session(),
                                     timeout=settings.request_timeout)
    api = ApiClient(settings, identity_client)
    session = DeviceSession(api, identity_client, build_pairing(settings, cancel_token),
                            settings.device_file)
    engine = TesseractEngine(dpi=settings.monitor.ocr_dpi)

    code = run(settings, session, api, engine, cancel_token)
    log.info("Agent stopped (exit code %d)", code)
    sys.exit(code)
