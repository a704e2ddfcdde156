"""Structured JSON Logging with Correlation ID Support"""
import json
import logging
import os
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Iterator, Optional
from contextvars import ContextVar

from ..config.settings import settings
from .idgen import generate_correlation_id


# Context variable for correlation ID
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Record attributes copied into the JSON payload when present
EXTRA_FIELDS = [
    "instance_id",
    "template_id",
    "node_id",
    "user_id",
    "action",
    "status",
    "error_code",
    "conditions",
    "correlation_id",
]

MAX_LOG_BYTES = 10 * 1024 * 1024  # 10MB


class JsonFormatter(logging.Formatter):
    """One JSON object per record with engine context fields"""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "environment": settings.environment,
            "message": record.getMessage(),
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_obj["correlation_id"] = correlation_id

        for field in EXTRA_FIELDS:
            if hasattr(record, field):
                log_obj[field] = getattr(record, field)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


def _rotating_handler(path: str, formatter: logging.Formatter, level: int = logging.NOTSET) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=5, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging() -> None:
    """
    Configure the root logger

    Console output is always on. engine.log and error.log are written under
    settings.logs_path only when settings.log_to_file is set; error.log
    receives ERROR records such as corrupt graph reports.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))
    root_logger.handlers.clear()

    json_formatter = JsonFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(json_formatter)
    root_logger.addHandler(console_handler)

    if not settings.log_to_file:
        return

    os.makedirs(settings.logs_path, exist_ok=True)
    root_logger.addHandler(
        _rotating_handler(os.path.join(settings.logs_path, "engine.log"), json_formatter)
    )
    root_logger.addHandler(
        _rotating_handler(os.path.join(settings.logs_path, "error.log"), json_formatter, logging.ERROR)
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name"""
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """Adapter that merges bound context (e.g. instance_id) into every record"""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra", {}))
        correlation_id = correlation_id_var.get()
        if correlation_id:
            extra["correlation_id"] = correlation_id
        kwargs["extra"] = extra
        return msg, kwargs


def get_context_logger(name: str, **context: Any) -> LoggerAdapter:
    """Get a logger adapter bound to context fields"""
    return LoggerAdapter(logging.getLogger(name), context)


def set_correlation_id(correlation_id: Optional[str]) -> None:
    """Set correlation ID in context"""
    correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Get correlation ID from context"""
    return correlation_id_var.get()


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """
    Tag everything logged and audited inside the block with one correlation ID

    An ID already set by an outer scope is kept; otherwise correlation_id
    (or a fresh one) is used and the previous value restored on exit.
    """
    current = correlation_id_var.get()
    if current and correlation_id is None:
        yield current
        return

    token = correlation_id_var.set(correlation_id or generate_correlation_id())
    try:
        yield correlation_id_var.get()
    finally:
        correlation_id_var.reset(token)
