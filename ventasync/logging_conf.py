# ventasync/logging_conf.py
from __future__ import annotations

import json
import logging
import os
from logging.config import dictConfig
from typing import Any


class JsonFormatter(logging.Formatter):
    """Minimal JSON formatter for structured logs to stdout."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # sync-layer context passed through `extra=`
        for extra_key in ("resource", "cache_key", "status_code"):
            val = getattr(record, extra_key, None)
            if val is not None:
                payload[extra_key] = val
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str | None = None, plain: bool = False) -> None:
    """Configure JSON logging for the sync layer + uvicorn; plain=True for CLI output on stderr."""
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    handler = "console_plain" if plain else "console"

    dict_config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": JsonFormatter,
            },
            "plain": {
                "format": "%(levelname)s %(name)s %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
                "stream": "ext://sys.stdout",
            },
            # CLI writes payloads to stdout, so its logs go to stderr
            "console_plain": {
                "class": "logging.StreamHandler",
                "formatter": "plain",
                "stream": "ext://sys.stderr",
            },
        },
        "root": {
            "level": log_level,
            "handlers": [handler],
        },
        "loggers": {
            "uvicorn": {"level": log_level, "handlers": [handler], "propagate": False},
            "uvicorn.error": {"level": log_level, "handlers": [handler], "propagate": False},
            # Suppress default uvicorn access logs (the timing middleware emits request JSON)
            "uvicorn.access": {"level": "WARNING", "handlers": [handler], "propagate": False},
            "fastapi": {"level": log_level, "handlers": [handler], "propagate": False},
            # httpx logs every request at INFO; the client already counts them
            "httpx": {"level": "WARNING", "handlers": [handler], "propagate": False},
            "ventasync": {"level": log_level, "handlers": [handler], "propagate": False},
            "request": {"level": log_level, "handlers": [handler], "propagate": False},
        },
    }

    dictConfig(dict_config)
