"""Logging structuré (JSON lines) pour le ledger de stock."""

from __future__ import annotations

import json
import logging
import sys
import threading
from contextvars import ContextVar
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

__all__ = [
    "LogContext",
    "StructuredFormatter",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

_LOGGER_PREFIX = "stockledger"


# ---------- CONTEXTE ----------
class LogContext:
    """Champs de log propres à la requête en cours (thread / async safe)."""

    _correlation_id: ContextVar[str | None] = ContextVar("log_correlation_id", default=None)
    _actor_id: ContextVar[str | None] = ContextVar("log_actor_id", default=None)
    _po_number: ContextVar[str | None] = ContextVar("log_po_number", default=None)

    _FIELD_NAMES = ("correlation_id", "actor_id", "po_number")

    @classmethod
    def get_all(cls) -> dict[str, str]:
        ctx: dict[str, str] = {}
        for name in cls._FIELD_NAMES:
            val = getattr(cls, f"_{name}").get()
            if val is not None:
                ctx[name] = val
        return ctx

    @classmethod
    def clear(cls) -> None:
        for name in cls._FIELD_NAMES:
            getattr(cls, f"_{name}").set(None)

    @classmethod
    def bind(cls, **kwargs: str | None) -> "_LogContextManager":
        """Pose les champs à l'entrée, restaure les anciennes valeurs à la sortie."""
        unknown = set(kwargs) - set(cls._FIELD_NAMES)
        if unknown:
            raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
        return _LogContextManager(**kwargs)


class _LogContextManager:
    def __init__(self, **kwargs: str | None):
        self._kwargs = kwargs
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> type[LogContext]:
        for key, val in self._kwargs.items():
            if val is not None:
                self._tokens[key] = getattr(LogContext, f"_{key}").set(val)
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        for key, token in self._tokens.items():
            getattr(LogContext, f"_{key}").reset(token)


# ---------- FORMATTER ----------
_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        return str(obj)
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """Une ligne JSON par record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            code = getattr(exc, "code", None)
            if code is not None:
                payload["exc_code"] = code
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------- INIT ----------
_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    json_lines: bool = True,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Configure la hiérarchie de loggers `stockledger` (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    if json_lines:
        h.setFormatter(StructuredFormatter())
    else:
        h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Tests uniquement."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
