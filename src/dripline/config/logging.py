"""Logging configuration with JSON format support."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

_SENSITIVE_PATTERNS = [
    (r"Bearer\s+[A-Za-z0-9._~+/=-]{8,}", "Bearer [REDACTED]"),
    (r'api[_-]?key["\']?\s*[:=]\s*["\']?[^"\'\s,]+', "api_key=[REDACTED]"),
    (r'password["\']?\s*[:=]\s*["\']?[^"\'\s]+', "password=[REDACTED]"),
    (r'token["\']?\s*[:=]\s*["\']?[^"\'\s]+', "token=[REDACTED]"),
]


def sanitize_log_message(message: str) -> str:
    """Redact credentials from a log message."""
    result = message
    for pattern, replacement in _SENSITIVE_PATTERNS:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE)
    return result


class SanitizingFilter(logging.Filter):
    """Filter that sanitizes sensitive data from log messages.

    Removes API keys, tokens, and other secrets from log output.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Sanitize the log message."""
        if record.msg:
            record.msg = sanitize_log_message(str(record.msg))
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                sanitize_log_message(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


class JSONFormatter(logging.Formatter):
    """Format log records as JSON for structured logging."""

    # Optional fields to extract from log records
    _OPTIONAL_FIELDS = (
        "organization_id",
        "workflow_id",
        "state_id",
        "contact_id",
        "step_pointer",
        "step_kind",
        "outcome",
        "duration_ms",
        "request_id",
        "status_code",
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in self._OPTIONAL_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Standard text formatter with consistent format."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def configure_logging(
    level: str = "INFO", format: str = "text", sanitize_logs: bool = True
) -> None:
    """Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format ('text' or 'json')
        sanitize_logs: If True, redact sensitive data (API keys, tokens) from logs
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))

    if format.lower() == "json":
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(TextFormatter())

    if sanitize_logs:
        console_handler.addFilter(SanitizingFilter())

    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
