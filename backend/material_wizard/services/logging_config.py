"""
Structured logging for the material wizard service.

Log lines emitted while a request is being handled carry that request's id
(and the wizard session id once a route has resolved one), without each call
site passing them through ``extra``.
"""
import logging
import json
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
session_id_var: ContextVar[Optional[str]] = ContextVar("session_id", default=None)

# Attributes copied onto the JSON line when a record has them
_EXTRA_FIELDS = (
    "request_id",
    "session_id",
    "duration_ms",
    "call",
    "http_method",
    "http_path",
    "http_status",
)

_NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx")


class RequestContextFilter(logging.Filter):
    """Stamp the current request/session ids onto records that lack them."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_var.get()
        if getattr(record, "session_id", None) is None:
            record.session_id = session_id_var.get()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line; None-valued context fields are left out."""

    def format(self, record):
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for field in _EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", json_output: bool = True):
    """Configure root logging for the service (JSON in production, text locally)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter())
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s req=%(request_id)s session=%(session_id)s: %(message)s"
        ))
    root.handlers = [handler]

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
