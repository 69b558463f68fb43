"""Logging setup: module loggers, JSON lines on stdout by default."""

from __future__ import annotations

import logging
import os
import sys
from typing import IO, Any

import orjson

_DEFAULT_LEVEL = os.environ.get("LECTERN_LOG_LEVEL", "INFO")


class JsonFormatter(logging.Formatter):
    """Render each record as one JSON object.

    Attributes passed through ``extra={"ctx_...": ...}`` are copied into the
    payload so worker logs can be correlated with a source or bot.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key.startswith("ctx_"):
                payload[key] = value
        return orjson.dumps(payload, default=str).decode("utf-8")


def configure_logging(
    level: str | int = _DEFAULT_LEVEL, use_json: bool = True, stream: IO[str] | None = None
) -> None:
    """Configure the ``lectern`` logger hierarchy.

    Args:
        level: Level name or number (``LECTERN_LOG_LEVEL`` when omitted).
        use_json: Emit JSON lines; otherwise a plain human-readable format.
        stream: Destination; stdout when omitted.
    """
    logging.captureWarnings(True)
    root = logging.getLogger("lectern")
    root.setLevel(level)
    handler = logging.StreamHandler(stream or sys.stdout)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s")
        )
    root.handlers = [handler]


def get_logger(name: str = "lectern") -> logging.Logger:
    """Return a logger under the ``lectern`` namespace."""
    if not name.startswith("lectern"):
        name = f"lectern.{name}"
    return logging.getLogger(name)


__all__ = ["JsonFormatter", "configure_logging", "get_logger"]
