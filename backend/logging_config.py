"""
Invoicing Core - Structured Logging

JSON lines in production, plain text in development. Every record carries
the id of the request it was emitted in and the acting user, so the audit
events of one send or domain operation can be correlated.

Request context lives in context variables: concurrent requests served by
the same event loop each see their own values.
"""

import json
import logging
import os
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_user_id: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

# LogRecord attributes that are not `extra` fields
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "request_id", "user_id",
}

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, `extra` fields nested under "extra"."""

    def __init__(self, service_name: str = "invoicing-core"):
        super().__init__()
        self.service_name = service_name
        self.environment = os.environ.get("ENVIRONMENT", "development")

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
            "request_id": getattr(record, "request_id", None),
            "user_id": getattr(record, "user_id", None),
            "location": f"{record.pathname}:{record.lineno} in {record.funcName}",
        }

        if record.exc_info and record.exc_info[0]:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": "".join(traceback.format_exception(*record.exc_info)),
            }

        extra = {k: v for k, v in vars(record).items() if k not in _RESERVED}
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str)


class RequestContextFilter(logging.Filter):
    """Stamps request_id and user_id from the current context on each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        record.user_id = _user_id.get()
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    service_name: str = "invoicing-core"
) -> logging.Logger:
    """
    Replace the root handlers with a single stdout handler.

    Args:
        level: Log level name
        json_format: JSON lines (production) instead of plain text
        service_name: Service name written into every JSON record
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(service_name) if json_format else logging.Formatter(TEXT_FORMAT))
    handler.addFilter(RequestContextFilter())
    root_logger.addHandler(handler)

    for noisy in ("uvicorn.access", "botocore", "urllib3", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_request_context(request_id: Optional[str] = None, user_id: Optional[str] = None):
    """Bind request_id / user_id to the current request; None leaves a value as it is."""
    if request_id is not None:
        _request_id.set(request_id)
    if user_id is not None:
        _user_id.set(user_id)


def clear_request_context():
    _request_id.set(None)
    _user_id.set(None)
