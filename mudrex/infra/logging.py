"""
Mudrex Centralized Logging
--------------------------
Structured logging with request_id propagation for full request traceability.

Design:
- Every execute() call gets a unique request_id
- request_id propagates through: Dispatcher -> Rate Limiter -> Transport
- Supports both console (Rich) and file (JSON) output
- Registered secrets are masked before a record reaches any handler
- Clear severity discipline: DEBUG=attempt, WARNING=retry, ERROR=abort

The library never configures handlers on import; applications opt in:

    from mudrex.infra.logging import configure_logging

    configure_logging(level=logging.DEBUG, log_file="logs/mudrex.log")
"""

import contextvars
import json
import logging
import uuid
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from rich.logging import RichHandler

# Context variable for request_id - thread-safe and async-safe
_request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)

# Secrets that must never appear in a log line, with the number of live owners
_secrets: Counter = Counter()


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return f"req_{uuid.uuid4().hex[:12]}"


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return _request_id_var.get()


class RequestContext:
    """
    Context manager for request scoping.

    Usage:
        with RequestContext() as request_id:
            # All logs within this block will have request_id
            logger.info("Sending...")
    """

    def __init__(self, request_id: Optional[str] = None):
        self._request_id = request_id or generate_request_id()
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> str:
        self._token = _request_id_var.set(self._request_id)
        return self._request_id

    def __exit__(self, *args) -> None:
        if self._token is not None:
            _request_id_var.reset(self._token)


def mask_secret(secret: str) -> str:
    """Mask a secret for display, keeping only its edges."""
    if len(secret) <= 8:
        return "****"
    return f"{secret[:4]}…{secret[-4:]}"


def register_secret(secret: str) -> None:
    """Register a value that log records must never contain."""
    if secret:
        _secrets[secret] += 1


def unregister_secret(secret: str) -> None:
    """Drop one registration; the value stays masked while others hold it."""
    if _secrets.get(secret, 0) > 1:
        _secrets[secret] -= 1
    else:
        _secrets.pop(secret, None)


class RequestIdFilter(logging.Filter):
    """Logging filter that adds request_id to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id() or "-"
        return True


class SecretRedactionFilter(logging.Filter):
    """Replaces registered secrets in the rendered message with a masked form."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not _secrets:
            return True

        message = record.getMessage()
        redacted = message
        for secret in list(_secrets):
            if secret in redacted:
                redacted = redacted.replace(secret, mask_secret(secret))

        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured file logging."""

    EXTRA_FIELDS = ("method", "path", "attempt", "status_code", "delay", "kind")

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in self.EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


# Library default: silent unless the application configures handlers
logging.getLogger("mudrex").addHandler(logging.NullHandler())

_configured_handlers: List[logging.Handler] = []


def configure_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    console: bool = True,
) -> None:
    """
    Configure the mudrex logging namespace.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        level: Logging level (default INFO)
        log_file: Path of a JSON-lines log file (disabled when None)
        console: Enable Rich console output
    """
    root_logger = logging.getLogger("mudrex")
    root_logger.setLevel(level)

    for handler in _configured_handlers:
        root_logger.removeHandler(handler)
        handler.close()
    _configured_handlers.clear()

    filters = [RequestIdFilter(), SecretRedactionFilter()]

    if console:
        console_handler = RichHandler(show_path=False, rich_tracebacks=False)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter("[%(request_id)s] %(name)s: %(message)s"))
        _configured_handlers.append(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(str(log_path), mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)  # File gets everything
        file_handler.setFormatter(JSONFormatter())
        _configured_handlers.append(file_handler)

    for handler in _configured_handlers:
        for log_filter in filters:
            handler.addFilter(log_filter)
        root_logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the mudrex namespace.

    Args:
        name: Logger name (will be prefixed with 'mudrex.' if not already)

    Returns:
        Logger carrying request_id and secret redaction filters
    """
    if not name.startswith("mudrex"):
        name = f"mudrex.{name}"

    logger = logging.getLogger(name)
    if not any(isinstance(f, SecretRedactionFilter) for f in logger.filters):
        logger.addFilter(RequestIdFilter())
        logger.addFilter(SecretRedactionFilter())
    return logger
