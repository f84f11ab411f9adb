"""
Logging configuration helpers.
Modules log through named loggers; this sets the process-wide format and level once.
"""

from __future__ import annotations

import logging

from src.common.settings import get_settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_LOGGING_CONFIGURED = False


def configure_logging(level: str | None = None) -> None:
    """Configure process-wide logging from environment settings."""

    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    level_name = (level or get_settings().LOG_LEVEL).upper()
    resolved_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(level=resolved_level, format=LOG_FORMAT)
    _LOGGING_CONFIGURED = True
