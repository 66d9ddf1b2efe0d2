"""Logging configuration helpers."""

from __future__ import annotations

import logging
import logging.config
from typing import Any

from .config import LoggingSettings

_QUIET_LOGGERS = ("httpx", "httpcore")


def _structured_formatter() -> dict[str, Any]:
    """Return a dictConfig fragment for key=value structured logs."""
    return {
        "format": 'ts="{asctime}" level={levelname} logger={name} msg="{message}"',
        "style": "{",
    }


def _plain_formatter() -> dict[str, Any]:
    """Return a dictConfig fragment for human readable logs."""
    return {
        "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
    }


def configure_logging(settings: LoggingSettings) -> None:
    """Configure application logging according to provided settings."""
    formatter = _structured_formatter() if settings.structured else _plain_formatter()
    level = settings.level.upper()

    dict_config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": formatter,
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "level": level,
            },
        },
        "loggers": {
            name: {"level": "WARNING", "propagate": True} for name in _QUIET_LOGGERS
        },
        "root": {
            "handlers": ["console"],
            "level": level,
        },
    }

    logging.config.dictConfig(dict_config)
    logging.getLogger(__name__).debug("Logging configured at %s", level)


__all__ = ["configure_logging"]
