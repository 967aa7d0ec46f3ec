"""
Open Accountability — endpoint agent
====================================
Periodically captures each display, OCRs it, counts blacklisted keywords,
and reports the counts for this device to the accountability service.

Runs as the systemd unit ``open-accountability.service``
(``Restart=always``, ``RestartSec=30s``).

Usage:
    python agent.py
"""

from openacc_core.runner import main


if __name__ == "__main__":
    main()
