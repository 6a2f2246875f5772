"""
Structured JSON logging for promptforge.

One JSON object per line, so provider calls, failovers and cache activity
can be filtered downstream by ``provider`` or ``operation``:

    {"timestamp": "2026-01-05T10:00:00.000000Z", "level": "WARNING",
     "logger": "promptforge.orchestrator", "message": "Provider openai failed ...",
     "provider": "openai", "operation": "completion", ...}
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, TextIO

# Record attributes copied into the payload when a caller passes them via ``extra``
EXTRA_FIELDS = ("correlation_id", "provider", "operation", "latency_ms")

# Third-party loggers that are too chatty below WARNING
QUIET_LOGGERS = ("httpx", "httpcore")


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON.

    Example:
        >>> handler = logging.StreamHandler()
        >>> handler.setFormatter(JSONFormatter())
        >>> logging.getLogger("promptforge").addHandler(handler)
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        payload.update(
            {name: getattr(record, name) for name in EXTRA_FIELDS if hasattr(record, name)}
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level: str = "INFO", stream: TextIO | None = None) -> logging.Handler:
    """
    Route all logging through a single JSON handler.

    Args:
        level: Root log level name, case-insensitive
        stream: Output stream (stdout by default)

    Returns:
        The installed handler
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"JSON logging enabled at {level.upper()}")
    return handler
