from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
import json
import logging
import re
from typing import Any, Iterator, Mapping
from uuid import uuid4

from pydantic import BaseModel


REQUEST_ID_CONTEXT: ContextVar[str] = ContextVar("request_id", default="-")
REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")
HANDLER_MARKER = "_intel_export_handler"
MAX_LOGGED_STRING = 240

# Provenance bundles carry signer material; feeds carry author addresses.
REDACTED_KEYS = frozenset(
    {
        "authorization",
        "cookie",
        "set_cookie",
        "email",
        "pubkey",
        "publickey",
        "signature",
    }
)
REDACTED_KEY_FRAGMENTS = ("password", "secret", "token", "api_key", "apikey", "private_key")

_TEXT_REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"-----BEGIN [A-Z ]*PRIVATE KEY-----[\s\S]*?-----END [A-Z ]*PRIVATE KEY-----", re.IGNORECASE),
        "[REDACTED_PRIVATE_KEY]",
    ),
    (re.compile(r"(?i)\bBearer\s+[A-Za-z0-9\-._~+/]+=*"), "Bearer [REDACTED]"),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[REDACTED_EMAIL]"),
)

# Attributes every LogRecord carries; anything else arrived through `extra=`.
_BUILTIN_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def normalize_request_id(candidate: str | None) -> str:
    trimmed = (candidate or "").strip()
    if REQUEST_ID_PATTERN.fullmatch(trimmed):
        return trimmed
    return uuid4().hex


def current_request_id() -> str:
    return REQUEST_ID_CONTEXT.get()


@contextmanager
def bound_request_id(request_id: str) -> Iterator[str]:
    """Expose `request_id` to every log record emitted inside the block."""
    token = REQUEST_ID_CONTEXT.set(request_id)
    try:
        yield request_id
    finally:
        REQUEST_ID_CONTEXT.reset(token)


def _is_redacted_key(key: str) -> bool:
    normalized = key.strip().lower().replace("-", "_")
    return normalized in REDACTED_KEYS or any(fragment in normalized for fragment in REDACTED_KEY_FRAGMENTS)


def _clip(text: str, limit: int) -> str:
    for pattern, replacement in _TEXT_REDACTIONS:
        text = pattern.sub(replacement, text)
    return text if len(text) <= limit else f"{text[:limit]}...[truncated]"


def sanitize_for_logging(value: Any, *, max_string_length: int = MAX_LOGGED_STRING) -> Any:
    """Make a log payload safe to emit.

    Feed bodies can be hundreds of kilobytes and provenance bundles carry
    signature material, so strings are clipped and signature-like keys are
    masked before anything reaches a handler. Pydantic models (export records,
    warnings) are logged through their JSON dump.
    """
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, Mapping):
        return {
            str(key): "[REDACTED]"
            if _is_redacted_key(str(key))
            else sanitize_for_logging(item, max_string_length=max_string_length)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_for_logging(item, max_string_length=max_string_length) for item in value]
    if isinstance(value, (bytes, bytearray)):
        return f"[{len(value)} bytes]"
    if isinstance(value, str):
        return _clip(value, max_string_length)
    return value


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = current_request_id()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; `extra=` fields are sanitized and inlined."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", current_request_id()),
        }
        payload.update(
            (key, sanitize_for_logging(value))
            for key, value in vars(record).items()
            if key not in _BUILTIN_RECORD_ATTRS and key not in payload
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def configure_logging(level_name: str) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    if any(getattr(handler, HANDLER_MARKER, False) for handler in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestIdFilter())
    setattr(handler, HANDLER_MARKER, True)
    root.addHandler(handler)
