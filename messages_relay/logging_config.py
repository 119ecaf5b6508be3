"""
Logging Setup

Everything goes to stdout in one format. Library loggers stay at WARNING so
per-request relay logs are not drowned out.
"""

import logging.config
from typing import Any

from messages_relay.config import Settings

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Library loggers and the level they are held at
QUIET_LOGGERS = {
    "uvicorn": "INFO",
    "uvicorn.error": "INFO",
    "uvicorn.access": "WARNING",
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "google_genai": "WARNING",
}


def _console_logger(level: str) -> dict[str, Any]:
    return {"handlers": ["console"], "level": level, "propagate": False}


def build_logging_config(settings: Settings) -> dict[str, Any]:
    """dictConfig mapping for the relay; DEBUG turns on payload-level logs."""
    level = "DEBUG" if settings.DEBUG else "INFO"
    loggers = {name: _console_logger(lib_level) for name, lib_level in QUIET_LOGGERS.items()}
    loggers["messages_relay"] = _console_logger(level)
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"standard": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["console"], "level": level},
        "loggers": loggers,
    }


def setup_logging(settings: Settings) -> None:
    logging.config.dictConfig(build_logging_config(settings))
