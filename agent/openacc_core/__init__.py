"""
openacc_core — Open Accountability endpoint agent
=================================================
Architecture: single sequential monitor loop + signal-driven cancellation token.

  constants.py      → Version, endpoints, thresholds, unit-file directives
  config.py         → Paths, logging, settings, device record load/save
  errors.py         → Exception hierarchy (auth, entitlement, network, tamper...)
  state.py          → DeviceIdentity dataclass + SessionState enum
  http_client.py    → HTTP session with retry/pooling + CA bundle
  identity.py       → IdentityClient (refresh token → ID token)
  api.py            → Request bodies, send_with_refresh(), endpoint calls
  enrollment.py     → Pairing providers (local web page, environment)
  session.py        → DeviceSession (register, safe-exit handshake, exit)
  tamper.py         → TamperGuard (systemd unit check)
  listeners.py      → CancellationToken + SIGINT/SIGTERM listener
  blacklist.py      → Keyword map build/reset/report
  capture.py        → ScreenCapturer (mss → Pillow)
  analyzer.py       → ImageAnalyzer + Tesseract engine
  monitor.py        → MonitorLoop (capture → analyze → report → sleep)
  platform_linux.py → Shutdown detection, single instance lock
  runner.py         → main()
"""
