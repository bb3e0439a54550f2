"""
Structured JSON logging with request ID tracing.

This module provides:
- JSON-formatted log output for machine parsing (Cloud Logging, Datadog, etc.)
- Request ID propagation via contextvars (thread-safe, works with async)
- Automatic request_id injection into every log entry
- Email masking so attempt logs never carry full addresses

Usage:
    from login_guard.utils.structured_logger import setup_structured_logging, get_logger, set_request_id

    setup_structured_logging()
    set_request_id("abc-123")
    logger = get_logger(__name__)
    logger.warning("Lockout applied", extra={"key_kind": "ip"})
"""

import logging
import json
import sys
from datetime import datetime, timezone
from contextvars import ContextVar
from typing import Optional, Any, Dict


# Context variable for async-safe request tracing
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)

DEFAULT_SERVICE_NAME = "login-guard"


def set_request_id(request_id: str) -> None:
    """Set request ID for current context."""
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    """Get request ID for current context."""
    return request_id_var.get()


def clear_request_id() -> None:
    """Clear request ID for current context."""
    request_id_var.set(None)


def mask_email(email: Optional[str]) -> str:
    """Mask an email for logging: 'alice@example.com' -> 'a***@example.com'.

    Values without an '@' are treated as opaque keys and only the first
    character is kept.
    """
    if not email:
        return ""
    local, sep, domain = email.partition("@")
    if not sep:
        return f"{email[:1]}***"
    return f"{local[:1]}***@{domain}"


class JSONFormatter(logging.Formatter):
    """JSON log formatter with request_id injection.

    Formats log records as JSON with consistent structure:
    {
        "timestamp": "2024-01-21T15:30:00.123456Z",
        "level": "INFO",
        "logger": "module.name",
        "message": "Log message",
        "request_id": "abc-123",
        "service": "login-guard",
        ...extra fields...
    }
    """

    # Standard LogRecord attributes that never go into "extra"
    STANDARD_ATTRS = {
        'name', 'msg', 'args', 'created', 'filename', 'funcName',
        'levelname', 'levelno', 'lineno', 'module', 'msecs',
        'pathname', 'process', 'processName', 'relativeCreated',
        'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
        'message', 'taskName'
    }

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": get_request_id(),
            "service": self.service_name,
        }

        log_data["source"] = {
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        extra_fields = {}
        for key, value in record.__dict__.items():
            if key not in self.STANDARD_ATTRS and not key.startswith('_'):
                try:
                    json.dumps(value)
                    extra_fields[key] = value
                except (TypeError, ValueError):
                    extra_fields[key] = str(value)

        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class PlainFormatter(logging.Formatter):
    """Plain text formatter with request_id for development.

    Format: timestamp - logger - level - [request_id] message
    """

    def format(self, record: logging.LogRecord) -> str:
        request_id = get_request_id()
        request_id_str = f"[{request_id}] " if request_id else ""

        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')

        base_message = f"{timestamp} - {record.name} - {record.levelname} - {request_id_str}{record.getMessage()}"

        if record.exc_info:
            base_message += "\n" + self.formatException(record.exc_info)

        return base_message


def setup_structured_logging(
    level: str = "INFO",
    json_output: bool = True,
    service_name: str = DEFAULT_SERVICE_NAME
) -> None:
    """Configure structured logging for the application.

    Call once at startup, before any logging statements run.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON format. If False, use plain text (for development)
        service_name: Service name to include in log entries
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers to prevent duplicate logs
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)

    if json_output:
        handler.setFormatter(JSONFormatter(service_name=service_name))
    else:
        handler.setFormatter(PlainFormatter())

    root_logger.addHandler(handler)

    # Reduce noise from the supabase client stack
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("hpack").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically get_logger(__name__))."""
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **context: Any
) -> None:
    """Log a message with additional context fields.

    Example:
        log_with_context(logger, logging.WARNING, "Lockout applied",
                         key_kind="email", tier="soft")
    """
    logger.log(level, message, extra=context)
