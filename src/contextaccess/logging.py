"""Logging utilities for the access-control engine.

This module provides:
- Logging configuration from AccessSettings
- Safe preview utilities for request attributes
- Secret redaction
- Structured logging with subject_id / request_id propagation
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from .config import AccessSettings, LogLevel
from .permissions.models import AccessRequest

# Patterns for detecting secrets in messages and extra fields
SECRET_PATTERNS = [
    r'(?i)(?:password|passwd|pwd|secret|token|api[_-]?key|auth[_-]?token)\s*[:=]\s*["\']?([^"\'\s]+)',
    r"(?i)(?:bearer|basic)\s+([a-zA-Z0-9+/=._-]+)",
    r"(?i)(?:sk-|pk-)[a-zA-Z0-9]{32,}",
    r'(?i)(?:x-api-key|x-auth-token|x-access-token)\s*[:=]\s*["\']?([^"\'\s]+)',
    r"(?i)(?:-----BEGIN\s+(?:RSA\s+)?(?:PRIVATE\s+)?KEY-----).*?(?:-----END\s+(?:RSA\s+)?(?:PRIVATE\s+)?KEY-----)",
]

_RESERVED_ATTRS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "message", "pathname", "process", "processName", "relativeCreated",
        "thread", "threadName", "exc_info", "exc_text", "stack_info", "taskName",
        "subject_id", "request_id",
    }
)


def safe_preview(value: Any, limit: int = 240) -> str:
    """Create a single-line, length-bounded preview of a value for logging.

    Args:
        value: The value to preview (any type)
        limit: Maximum length of the preview (default: 240)

    Returns:
        A truncated string representation ("" for None)
    """
    if value is None:
        return ""

    if isinstance(value, str):
        s = value
    elif isinstance(value, (dict, list)):
        try:
            s = json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            s = str(value)
    else:
        s = str(value)

    s = " ".join(s.split())

    if len(s) > limit:
        return s[: limit - 1] + "…"
    return s


def redact_secrets(text: str, replacement: str = "[REDACTED]") -> str:
    """Replace credential-looking substrings (passwords, bearer tokens, keys)."""
    if not isinstance(text, str):
        return text

    result = text
    for pattern in SECRET_PATTERNS:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE | re.DOTALL)
    return result


def safe_log_value(value: Any, limit: int = 240, redact: bool = True) -> str:
    """Preview plus optional redaction. Use for any caller-supplied data."""
    preview = safe_preview(value, limit=limit)
    if redact:
        preview = redact_secrets(preview)
    return preview


class AccessLogFormatter(logging.Formatter):
    """Formatter emitting JSON (or plain text) with subject/request context.

    ``subject_id`` and ``request_id`` are read from the record when present;
    other extra fields are previewed and redacted.
    """

    def __init__(
        self,
        json_format: bool = True,
        redact_secrets: bool = True,
        service_name: Optional[str] = None,
        *args: Any,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.json_format = json_format
        self.redact_secrets = redact_secrets
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        subject_id = getattr(record, "subject_id", None)
        request_id = getattr(record, "request_id", None)

        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service_name:
            log_data["service"] = self.service_name
        if subject_id:
            log_data["subject_id"] = str(subject_id)
        if request_id:
            log_data["request_id"] = str(request_id)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = safe_log_value(value, redact=self.redact_secrets)

        if self.redact_secrets:
            log_data["message"] = redact_secrets(log_data["message"])

        if self.json_format:
            return json.dumps(log_data, default=str, ensure_ascii=False)

        parts = [
            f"[{log_data['timestamp']}]",
            f"{log_data['level']}",
            f"{log_data['logger']}",
        ]
        if subject_id:
            parts.append(f"subject_id={log_data['subject_id']}")
        if request_id:
            parts.append(f"request_id={log_data['request_id']}")
        parts.append(f": {log_data['message']}")
        text = " ".join(parts)
        if "exception" in log_data:
            text = f"{text}\n{log_data['exception']}"
        return text


class AccessLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter adding subject_id and request_id to every record.

    Usage:
        logger = get_access_logger(__name__, subject_id="u1")
        logger.info("Evaluating", request=access_request)
    """

    def __init__(
        self,
        logger: logging.Logger,
        subject_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(logger, {})
        self.subject_id = subject_id
        self.request_id = request_id

    def process(self, msg: str, kwargs: Any) -> tuple[str, Any]:
        subject_id = kwargs.pop("subject_id", self.subject_id)
        request_id = kwargs.pop("request_id", self.request_id)

        request = kwargs.pop("request", None)
        if isinstance(request, AccessRequest):
            subject_id = subject_id or request.subject.id
            request_id = request_id or request.context.attributes.get("request_id")

        extra = dict(kwargs.get("extra") or {})
        if subject_id:
            extra["subject_id"] = subject_id
        if request_id:
            extra["request_id"] = request_id
        kwargs["extra"] = extra

        return msg, kwargs


_LEVELS = {
    LogLevel.DEBUG.value: logging.DEBUG,
    LogLevel.INFO.value: logging.INFO,
    LogLevel.WARNING.value: logging.WARNING,
    LogLevel.ERROR.value: logging.ERROR,
    LogLevel.CRITICAL.value: logging.CRITICAL,
}


def setup_logging(
    settings: Optional[AccessSettings] = None,
    json_format: Optional[bool] = None,
    redact_secrets: bool = True,
) -> None:
    """Configure the root logger from AccessSettings.

    Args:
        settings: AccessSettings instance (if None, loads from environment)
        json_format: Override ``settings.log_json``
        redact_secrets: Whether to redact secrets (default: True)
    """
    if settings is None:
        from .config import load_access_settings_from_env

        settings = load_access_settings_from_env()

    level = settings.log_level
    log_level = _LEVELS.get(level.value if isinstance(level, LogLevel) else level, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        AccessLogFormatter(
            json_format=settings.log_json if json_format is None else json_format,
            redact_secrets=redact_secrets,
            service_name=settings.service_name,
        )
    )
    root_logger.addHandler(console_handler)


def get_access_logger(
    name: str,
    subject_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> AccessLoggerAdapter:
    """Get a logger adapter carrying subject/request context.

    Example:
        logger = get_access_logger(__name__)
        logger.info("Access denied", request=access_request)
    """
    return AccessLoggerAdapter(logging.getLogger(name), subject_id=subject_id, request_id=request_id)


__all__ = [
    "safe_preview",
    "redact_secrets",
    "safe_log_value",
    "AccessLogFormatter",
    "AccessLoggerAdapter",
    "setup_logging",
    "get_access_logger",
]
