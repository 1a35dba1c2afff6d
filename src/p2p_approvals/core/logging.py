"""Logging configuration driven by application settings."""

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from typing import Any

from p2p_approvals.core.config import Settings

# Attributes present on every LogRecord; anything else came from extra={}
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}

_configured = False
_lock = threading.Lock()


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(settings: Settings, *, stream: Any = None) -> None:
    """Install the root log handler (idempotent).

    Args:
        settings: Application settings (log_level, log_format)
        stream: Output stream, defaults to stderr
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    handler = logging.StreamHandler(stream or sys.stderr)
    if settings.log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
        )

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())


def reset_logging() -> None:
    """Forget previous configuration. Used by tests."""
    global _configured
    with _lock:
        _configured = False
