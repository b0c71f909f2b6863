"""Structured JSON logging configuration.

Configures Python stdlib logging to emit one JSON object per record with
`severity`, `timestamp`, and `logger` fields, so pipeline decisions can be
filtered by strategy or provider in any log collector.

Usage:
    from linkscribe.logging_config import configure_logging
    configure_logging()
"""

import copy
import logging
import logging.config

LOGGING_CONFIG: dict = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "format": "%(asctime)s %(levelname)s %(name)s %(funcName)s %(message)s",
            "rename_fields": {
                "levelname": "severity",
                "asctime": "timestamp",
                "name": "logger",
            },
            "static_fields": {
                "service": "linkscribe",
            },
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "stream": "ext://sys.stderr",
        },
    },
    "loggers": {
        # httpx logs every request at INFO
        "httpx": {"level": "WARNING"},
    },
    "root": {
        "level": "INFO",
        "handlers": ["console"],
    },
}


def configure_logging(level: str | None = None) -> None:
    """Apply structured JSON logging configuration.

    Call once at startup by the embedding application. ``level`` overrides the
    root level (e.g. ``get_settings().log_level``).
    """
    config = copy.deepcopy(LOGGING_CONFIG)
    if level:
        config["root"]["level"] = level.upper()
    logging.config.dictConfig(config)
