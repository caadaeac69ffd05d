"""Process-wide logging configuration."""

from __future__ import annotations

import logging

from .config_loader import get_section

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_LEVEL = "INFO"
ROOT_LOGGER_NAME = "src.screener"

_HANDLER_MARKER = "_screener_handler"


def _configured_level() -> str:
    value = get_section("logging").get("level")
    if isinstance(value, str) and value.strip():
        return value.strip().upper()
    return DEFAULT_LEVEL


def configure_logging(level: str | None = None) -> logging.Logger:
    """Attach a single stream handler to the package logger.

    Safe to call repeatedly; the level is updated but handlers are not duplicated.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    resolved = (level or _configured_level()).upper()
    logger.setLevel(getattr(logging, resolved, logging.INFO))

    if not any(getattr(handler, _HANDLER_MARKER, False) for handler in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        setattr(handler, _HANDLER_MARKER, True)
        logger.addHandler(handler)
    return logger
