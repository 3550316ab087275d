"""
Logging setup.

JSON records through python-json-logger when LOG_JSON is on, plain text otherwise.
Keys that look like credentials are masked before they reach a handler.
"""

from __future__ import annotations

import logging
import logging.config
from typing import Any

from pythonjsonlogger import jsonlogger

from webrana.core.config import settings

SENSITIVE_FIELDS = {
    "password",
    "token",
    "access_token",
    "refresh_token",
    "secret",
    "authorization",
    "api_key",
    "private_key",
}


class MaskingJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        for key in list(log_record.keys()):
            if key.lower() in SENSITIVE_FIELDS:
                log_record[key] = "***"


def build_logging_config(level: str | None = None, as_json: bool | None = None) -> dict[str, Any]:
    level = (level or settings.LOG_LEVEL).upper()
    as_json = settings.LOG_JSON if as_json is None else as_json

    formatter = "json" if as_json else "plain"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": MaskingJsonFormatter,
                "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
            },
            "plain": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": formatter,
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["console"], "level": level},
        "loggers": {
            "uvicorn.access": {"level": "WARNING"},
            "sqlalchemy.engine": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
        },
    }


def setup_logging(level: str | None = None, as_json: bool | None = None) -> None:
    logging.config.dictConfig(build_logging_config(level, as_json))
