from __future__ import annotations

from contextvars import ContextVar, Token
from datetime import datetime, timezone
import json
import logging
import re
from typing import Any, Mapping
from uuid import uuid4

REQUEST_ID_CONTEXT: ContextVar[str] = ContextVar("request_id", default="-")
REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")

HANDLER_MARKER = "_studyplan_handler"
# AWS SDK loggers emit a line per request at INFO; keep them at WARNING or above.
NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "s3transfer")

DEFAULT_MAX_STRING_LENGTH = 240

_SENSITIVE_KEYS = frozenset({"authorization", "cookie", "email"})
_SENSITIVE_KEY_FRAGMENTS = ("password", "secret", "token", "api_key", "apikey", "access_key", "credential", "signature")

_STRING_REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)\bBearer\s+[A-Za-z0-9\-._~+/]+=*"), "Bearer [REDACTED]"),
    (re.compile(r"\b(?:AKIA|ASIA)[0-9A-Z]{16}\b"), "[REDACTED_AWS_ACCESS_KEY]"),
    (re.compile(r"(?i)(X-Amz-(?:Signature|Credential|Security-Token)=)[^&\s]+"), r"\1[REDACTED]"),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[REDACTED_EMAIL]"),
)


def normalize_request_id(candidate: str | None) -> str:
    trimmed = (candidate or "").strip()
    return trimmed if REQUEST_ID_PATTERN.fullmatch(trimmed) else str(uuid4())


def set_request_id(request_id: str) -> Token[str]:
    return REQUEST_ID_CONTEXT.set(request_id)


def reset_request_id(token: Token[str]) -> None:
    REQUEST_ID_CONTEXT.reset(token)


def get_request_id() -> str:
    return REQUEST_ID_CONTEXT.get()


def is_sensitive_key(key: str) -> bool:
    normalized = key.strip().lower().replace("-", "_")
    return normalized in _SENSITIVE_KEYS or any(fragment in normalized for fragment in _SENSITIVE_KEY_FRAGMENTS)


def redact_text(value: str, *, max_length: int) -> str:
    for pattern, replacement in _STRING_REDACTIONS:
        value = pattern.sub(replacement, value)
    if len(value) > max_length:
        return f"{value[:max_length]}...[truncated]"
    return value


def sanitize_for_logging(value: Any, *, max_string_length: int = DEFAULT_MAX_STRING_LENGTH) -> Any:
    """Return a copy of ``value`` that is safe to attach to a log record.

    Credential-like mapping keys are replaced wholesale. Strings lose bearer
    tokens, AWS access keys, presigned URL signatures and email addresses and
    are clipped to ``max_string_length``; document text and model output pass
    through here before they reach a log line.
    """
    if isinstance(value, Mapping):
        return {
            str(key): "[REDACTED]"
            if is_sensitive_key(str(key))
            else sanitize_for_logging(item, max_string_length=max_string_length)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple, set, frozenset)):
        return [sanitize_for_logging(item, max_string_length=max_string_length) for item in value]
    if isinstance(value, bytes):
        return f"[{len(value)} bytes]"
    if isinstance(value, str):
        return redact_text(value, max_length=max_string_length)
    return value


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = get_request_id()
        return True


RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}
# Optional ``extra`` key that raises the string clipping limit for a single record.
MAX_STRING_LENGTH_ATTR = "log_max_string_length"

def extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    limit = getattr(record, MAX_STRING_LENGTH_ATTR, DEFAULT_MAX_STRING_LENGTH)
    return {
        key: sanitize_for_logging(value, max_string_length=limit)
        for key, value in record.__dict__.items()
        if key not in RESERVED_ATTRS and key != MAX_STRING_LENGTH_ATTR
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per line: fixed envelope fields plus every ``extra`` field, sanitized."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", get_request_id()),
        }
        payload.update(extra_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


TEXT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"


class TextFormatter(logging.Formatter):
    """``TEXT_LOG_FORMAT`` followed by the sanitized ``extra`` fields as compact JSON."""

    def __init__(self) -> None:
        super().__init__(TEXT_LOG_FORMAT)

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        extras = extra_fields(record)
        extras.pop("request_id", None)
        if not extras:
            return line
        return f"{line} {json.dumps(extras, ensure_ascii=False, default=str)}"


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format.strip().lower() == "text":
        return TextFormatter()
    return JsonFormatter()


def configure_logging(level_name: str, log_format: str = "json") -> None:
    """Install the studyplan handler on the root logger once; later calls only adjust the level."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if any(getattr(handler, HANDLER_MARKER, False) for handler in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(_build_formatter(log_format))
    handler.addFilter(RequestIdFilter())
    setattr(handler, HANDLER_MARKER, True)
    root.addHandler(handler)
