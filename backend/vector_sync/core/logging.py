"""Structured logging for vector-sync.

Every log line is a single JSON object. Call sites pass structured fields via
``extra=ctx(...)``; the formatter lifts them to top-level keys so log
aggregators can filter on ``tenant_id``, ``record_id`` or ``stage`` directly.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import orjson

_DEFAULT_LEVEL = os.environ.get("VSYNC_LOG_LEVEL", "INFO")
_DEFAULT_FORMAT = os.environ.get("VSYNC_LOG_FORMAT", "json")
_CTX_PREFIX = "ctx_"

# Chatty client libraries only report problems.
_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "urllib3")


class JsonFormatter(logging.Formatter):
    """JSON log formatter that lifts ``ctx_`` extras into the payload."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - thin wrapper
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key.startswith(_CTX_PREFIX):
                payload[key[len(_CTX_PREFIX) :]] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


def configure_logging(level: str | int = _DEFAULT_LEVEL, fmt: str = _DEFAULT_FORMAT) -> None:
    """Install a single stdout handler on the root logger."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = "vector_sync") -> logging.Logger:
    """Return configured logger, configuring root on first call."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


def ctx(**fields: Any) -> dict[str, Any]:
    """Build an ``extra`` mapping for structured log fields."""
    return {f"{_CTX_PREFIX}{key}": value for key, value in fields.items()}


__all__ = ["configure_logging", "get_logger", "ctx", "JsonFormatter"]
