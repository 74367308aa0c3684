from __future__ import annotations

import json
import logging
import sys
from typing import Any

from intake.core.config import settings

# Attributes every LogRecord carries; anything else came in through ``extra=``
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

# Multipart parsing logs every part at DEBUG
_QUIET_LOGGERS = ("multipart", "python_multipart")


class JsonFormatter(logging.Formatter):
    """One JSON object per line, tagged with the service and environment."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - formatting logic
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "service": settings.APP_NAME,
            "env": settings.ENV,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        extra = {
            key: value
            for key, value in record.__dict__.items()
            if not key.startswith("_") and key not in _RESERVED_ATTRS and key not in payload
        }
        if extra:
            payload["extra"] = extra
        return json.dumps(payload, default=str)


def init_logging(level: int | None = None) -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    effective_level = level or getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    if settings.LOG_FORMAT.lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    root.setLevel(effective_level)
    root.addHandler(handler)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(effective_level, logging.INFO))
