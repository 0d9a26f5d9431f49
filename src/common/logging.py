"""
Process-wide logging setup for the API and the import CLI.
Import workers run on background threads, so every line carries the thread name.
"""

from __future__ import annotations

import logging

from src.common.settings import get_settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s"
# Loggers of HTTP libraries that would otherwise echo every geocoder request.
QUIET_LOGGERS = ("urllib3", "httpx")

_configured = False


def configure_logging() -> None:
    global _configured
    if _configured:
        return

    level = logging.getLevelName(get_settings().LOG_LEVEL)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    _configured = True
