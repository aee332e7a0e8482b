"""
Structured Logger
==================

Event-style logging for the orchestration runtime.

Call sites log a snake_case event name plus keyword fields:

    logger = get_logger(__name__)
    logger.info("dedup_reuse", key=key, age_s=0.4)

The fields travel on the stdlib LogRecord; ``StructuredFormatter`` renders
them as one JSON object per line, or as a compact ``key=value`` line for
local development. Request-scoped fields (request_id, organization_id) live
in a context var, so they follow a request across ``await`` boundaries and
into tasks spawned from it.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# ── Request Context ───────────────────────────────────────────────

_log_context: ContextVar[dict[str, str]] = ContextVar("relay_log_context", default={})

def set_request_context(
    *,
    request_id: str | None = None,
    organization_id: str | None = None,
) -> None:
    """Attach request-scoped fields to every record logged from this context."""
    updates = {"request_id": request_id, "organization_id": organization_id}
    merged = dict(_log_context.get())
    merged.update({k: v for k, v in updates.items() if v is not None})
    _log_context.set(merged)

def clear_request_context() -> None:
    _log_context.set({})

def get_request_context() -> dict[str, str]:
    return dict(_log_context.get())

# ── Formatter ─────────────────────────────────────────────────────

# Everything a bare LogRecord carries is bookkeeping, not an event field.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

def _event_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {}
    for key, value in vars(record).items():
        if key in _RECORD_ATTRS or key.startswith("_"):
            continue
        if not isinstance(value, (str, int, float, bool, list, dict, type(None))):
            value = str(value)
        fields[key] = value
    return fields

class StructuredFormatter(logging.Formatter):
    """Renders event records as JSON lines or as readable single lines."""

    def __init__(self, *, json_output: bool = True, include_traceback: bool = True):
        super().__init__()
        self.json_output = json_output
        self.include_traceback = include_traceback

    def format(self, record: logging.LogRecord) -> str:
        fields = _event_fields(record)
        context = get_request_context()
        if self.json_output:
            return self._format_json(record, fields, context)
        return self._format_text(record, fields, context)

    def _format_json(
        self,
        record: logging.LogRecord,
        fields: dict[str, Any],
        context: dict[str, str],
    ) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            "line": record.lineno,
            "pid": os.getpid(),
            "context": context,
        }
        if fields:
            payload["data"] = fields
        if record.exc_info and self.include_traceback:
            exc_type, exc_value, exc_tb = record.exc_info
            payload["exception"] = {
                "type": getattr(exc_type, "__name__", None),
                "message": str(exc_value) if exc_value is not None else None,
                "traceback": traceback.format_exception(exc_type, exc_value, exc_tb)
                if exc_tb
                else None,
            }
        return json.dumps(payload, default=str, ensure_ascii=False)

    def _format_text(
        self,
        record: logging.LogRecord,
        fields: dict[str, Any],
        context: dict[str, str],
    ) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=UTC).strftime("%H:%M:%S.%f")[:-3]
        request = (context.get("request_id") or "-")[:8]
        pairs = " ".join(f"{key}={value}" for key, value in fields.items())
        line = f"{stamp} | {record.levelname:<8} | {request} | {record.name} | {record.getMessage()} {pairs}"
        line = line.rstrip()
        if record.exc_info and self.include_traceback:
            line += "\n" + self.formatException(record.exc_info)
        return line

# ── Logger ────────────────────────────────────────────────────────

class StructuredLogger:
    """
    Thin adapter over a stdlib logger: event name first, fields as kwargs.

    Usage:
        log = StructuredLogger("relay.infra.runtime.queue")
        log.debug("rate_limit_wait", queue_depth=4, wait_s=0.1)
        log.error("connected_providers_fetch_failed", exc=err)
    """

    __slots__ = ("_logger",)

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    @property
    def name(self) -> str:
        return self._logger.name

    def log(
        self,
        level: int,
        event: str,
        *,
        exc: BaseException | None = None,
        **fields: Any,
    ) -> None:
        if self._logger.isEnabledFor(level):
            # stacklevel 3 points past this method and the level helper.
            self._logger.log(level, event, exc_info=exc, extra=fields, stacklevel=3)

    def debug(self, event: str, **fields: Any) -> None:
        self.log(logging.DEBUG, event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self.log(logging.INFO, event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.log(logging.WARNING, event, **fields)

    def error(self, event: str, exc: BaseException | None = None, **fields: Any) -> None:
        self.log(logging.ERROR, event, exc=exc, **fields)

# ── Setup ─────────────────────────────────────────────────────────

_HANDLER_NAME = "relay-structured"
_QUIET_LOGGERS = ("asyncio", "opentelemetry")

def setup_logging(
    *,
    level: str = "INFO",
    json_output: bool | None = None,
    environment: str | None = None,
) -> logging.Handler:
    """
    Install the structured handler on the root logger.

    JSON output is the default everywhere except the ``development``
    environment. Calling this again replaces the handler it installed
    earlier and leaves any other handlers alone.
    """
    if json_output is None:
        env = environment or os.getenv("RELAY_ENVIRONMENT", "development")
        json_output = env != "development"

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(StructuredFormatter(json_output=json_output))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler

def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name)
