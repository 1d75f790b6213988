from __future__ import annotations

import logging

from cinemetrics.config import LoggingSettings

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
# Client libraries that log every request at INFO.
CHATTY_LOGGERS = ("httpx", "httpcore", "google_genai", "urllib3")


def configure_logging(settings: LoggingSettings) -> None:
    """Configure process-wide logging once at CLI startup."""

    level = getattr(logging, settings.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=DEFAULT_LOG_FORMAT, force=True)

    if level > logging.DEBUG:
        for name in CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
