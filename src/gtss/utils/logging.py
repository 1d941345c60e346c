"""Centralized logging setup and JSON formatter for structured logging."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_RESERVED_ATTRS = {
    "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno",
    "funcName", "created", "msecs", "relativeCreated", "thread",
    "threadName", "processName", "process", "name", "message",
    "taskName",
}


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects.

    Merges any `extra=` kwargs directly into the payload, so store
    operations can be filtered by ``entity`` / ``key`` downstream.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        # Merge any extra fields passed via logger.info(..., extra={...})
        for key, value in getattr(record, "__dict__", {}).items():
            if key not in _RESERVED_ATTRS:
                payload[key] = value

        # safe fallback for non-serializable objects
        return json.dumps(payload, default=str)


def configure_logging(
    level: str = "WARNING",
    json_format: bool = False,
    stream=None,
) -> logging.Logger:
    """Attach a single stream handler to the ``gtss`` package logger.

    Calling it again replaces the previous handler rather than stacking a
    second one.

    Args:
        level:       Level name (``'DEBUG'``, ``'INFO'``, ...).
        json_format: Use :class:`JsonFormatter` instead of plain text.
        stream:      Target stream; defaults to ``sys.stderr``.

    Returns:
        The configured ``gtss`` logger.
    """
    logger = logging.getLogger("gtss")
    for handler in list(logger.handlers):
        if getattr(handler, "_gtss_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler._gtss_handler = True  # type: ignore[attr-defined]
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
        )
    logger.addHandler(handler)
    logger.setLevel(_level_from_name(level))
    return logger


def _level_from_name(level: Optional[str]) -> int:
    if not level:
        return logging.WARNING
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.WARNING
