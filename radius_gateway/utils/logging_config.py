"""Structured logging configuration helpers."""

from __future__ import annotations

import json
import logging
import os
import socket
import traceback
from collections.abc import Iterable, Mapping, MutableMapping
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

__all__ = [
    "configure_logging",
    "get_logger",
    "get_structured_logger",
    "bind_context",
    "clear_context",
    "logging_context",
    "StructuredJSONFormatter",
    "StructuredLoggerAdapter",
    "REDACTED",
]

REDACTED = "***"

# Field names containing any of these markers never reach the output
_SENSITIVE_MARKERS = ("password", "secret")

# Attributes every LogRecord carries; anything else on a record is an extra field
_STANDARD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", logging.NOTSET, "", 0, "", (), None).__dict__
) | {"message", "context", "taskName"}

# Each asyncio task runs in a copy of the current context, so per-datagram
# bindings made inside a handler task stay local to that task.
_context: ContextVar[dict[str, Any]] = ContextVar(
    "radius_gateway_log_context", default={}
)
_logging_configured = False


@lru_cache(maxsize=1)
def _get_host() -> str:
    host = os.getenv("HOSTNAME")
    if host:
        return host
    try:
        return socket.gethostname()
    except OSError:
        return "unknown"


def _json_default(value: Any) -> str:
    if isinstance(value, bytes | bytearray):
        return f"<{len(value)} bytes>"
    return repr(value)


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SENSITIVE_MARKERS)


def _redact(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {k: (REDACTED if _is_sensitive(k) else v) for k, v in fields.items()}


class StructuredJSONFormatter(logging.Formatter):
    """Formatter that renders log records as one JSON object per line."""

    def __init__(self, *, service: str = "radius_gateway", utc: bool = True) -> None:
        super().__init__()
        self.service = service
        self.utc = utc

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, UTC if self.utc else None)

        payload: dict[str, Any] = {
            "schema": "log.v1",
            "ts": ts.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": getattr(record, "service", None) or self.service,
            "host": _get_host(),
            "correlation_id": getattr(record, "correlation_id", None) or "",
        }

        evt = getattr(record, "event", None)
        if evt:
            payload["event"] = evt

        context = getattr(record, "context", None) or _context.get()
        for key, value in _redact(dict(context)).items():
            if payload.get(key) in (None, ""):
                payload[key] = value

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        for key, value in _redact(extras).items():
            if key in payload and payload[key] not in (None, ""):
                continue
            payload[key] = value

        if record.exc_info:
            payload["error"] = {
                "type": str(getattr(record.exc_info[0], "__name__", "")),
                "message": str(record.exc_info[1]),
                "stack": "".join(traceback.format_exception(*record.exc_info)).strip(),
            }
        elif record.exc_text:
            payload["error"] = {"message": record.exc_text}

        return json.dumps(payload, default=_json_default, ensure_ascii=True)


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that accepts structured fields as keyword arguments.

    ``logger.info("msg", event="x", username="alice")`` stores ``event`` and
    ``username`` on the record; the bound task context and the adapter's
    static context travel along under ``context``.
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = kwargs.setdefault("extra", {})

        for key in [k for k in kwargs if k not in {"exc_info", "stack_info", "extra"}]:
            extra.setdefault(key, kwargs.pop(key))

        context_data = _context.get()
        if context_data or self.extra:
            extra.setdefault("context", {**dict(context_data), **dict(self.extra or {})})
        return msg, kwargs


def configure_logging(
    level: int = logging.INFO,
    *,
    stream: Any | None = None,
    handlers: Iterable[logging.Handler] | None = None,
    formatter: logging.Formatter | None = None,
    reset: bool = True,
) -> None:
    """Configure root logging with structured JSON output."""

    global _logging_configured

    formatter = formatter or StructuredJSONFormatter()
    resolved_handlers = list(handlers or [logging.StreamHandler(stream)])

    root = logging.getLogger()
    if reset:
        for existing in list(root.handlers):
            if isinstance(existing.formatter, StructuredJSONFormatter):
                root.removeHandler(existing)

    for handler in resolved_handlers:
        if handler.level == logging.NOTSET:
            handler.setLevel(level)
        if handler.formatter is None:
            handler.setFormatter(formatter)
        root.addHandler(handler)

    root.setLevel(level)
    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger, ensuring configuration exists."""
    if not _logging_configured:
        configure_logging()
    return logging.getLogger(name)


def get_structured_logger(name: str, **context: Any) -> StructuredLoggerAdapter:
    """Return a structured logger adapter with optional static context."""
    context = {k: v for k, v in context.items() if v is not None}
    return StructuredLoggerAdapter(get_logger(name), context)


def bind_context(**kwargs: Any) -> Token:
    """Bind key/value pairs to the contextual log scope."""
    current = dict(_context.get())
    current.update({k: v for k, v in kwargs.items() if v is not None})
    return _context.set(current)


def clear_context(token: Token | None = None) -> None:
    """Clear contextual information, optionally using a context token."""
    if token is not None:
        _context.reset(token)
    else:
        _context.set({})


@contextmanager
def logging_context(**kwargs: Any):
    """Context manager that binds log context for the enclosed block."""
    token = bind_context(**kwargs)
    try:
        yield
    finally:
        clear_context(token)
