"""Logging configuration using Loguru.

This module provides:
- Structured JSON logging for production
- Human-readable colorized output for development
- Request-scoped context (request_id, user_id) via a ContextVar
- Redaction of OAuth secrets that end up in log context
- Interception of standard library logging
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import TYPE_CHECKING

import orjson
from loguru import logger


if TYPE_CHECKING:
    from typing import Any


_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

REDACTED = "[redacted]"

# Context keys whose values must never reach a log sink
SENSITIVE_KEYS = frozenset(
    {
        "access_token",
        "refresh_token",
        "id_token",
        "code",
        "code_verifier",
        "client_secret",
        "password",
        "authorization",
    }
)


class InterceptHandler(logging.Handler):
    """Forward standard library log records to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def redact(values: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``values`` with sensitive keys masked."""
    return {
        key: REDACTED if key.lower() in SENSITIVE_KEYS else value
        for key, value in values.items()
    }


def _patch_record(record: dict[str, Any]) -> None:
    """Merge request context into the record and mask secrets."""
    extra = {**_log_context.get(), **record["extra"]}
    record["extra"] = redact(extra)


def _format_record(record: dict[str, Any]) -> str:
    """Serialize a record as a single JSON line."""
    serialize_fields = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "logger": record["extra"].get("name", record["name"]),
        "function": record["function"],
        "line": record["line"],
        **record["extra"],
    }

    if record["exception"]:
        exc = record["exception"]
        serialize_fields["exception"] = {
            "type": exc.type.__name__ if exc.type else None,
            "value": str(exc.value) if exc.value else None,
        }

    record["extra"]["serialized"] = orjson.dumps(
        serialize_fields, default=str
    ).decode()
    return "{extra[serialized]}\n"


def _format_record_dev(record: dict[str, Any]) -> str:
    """Format a record for humans, appending bound context."""
    context = {k: v for k, v in record["extra"].items() if k != "name"}
    context_str = ""
    if context:
        context_str = " | " + " ".join(f"{k}={v}" for k, v in context.items())
        # Braces in values would be read as format fields by loguru
        context_str = context_str.replace("{", "{{").replace("}", "}}")

    fmt = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan>"
        f"{context_str} - "
        "<level>{message}</level>\n"
    )

    if record["exception"]:
        fmt += "{exception}\n"

    return fmt


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    *,
    is_development: bool = False,
) -> None:
    """Configure Loguru sinks.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format ("json" or "text")
        is_development: Enable development-friendly formatting
    """
    logger.remove()
    logger.configure(patcher=_patch_record)

    use_json = log_format == "json" and not is_development

    if use_json:
        logger.add(
            sys.stdout,
            format=_format_record,
            level=log_level.upper(),
            colorize=False,
            backtrace=True,
            diagnose=False,
        )
    else:
        logger.add(
            sys.stdout,
            format=_format_record_dev,
            level=log_level.upper(),
            colorize=True,
            backtrace=True,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for logger_name in [
        "uvicorn",
        "uvicorn.access",
        "uvicorn.error",
        "httpx",
        "httpcore",
        "asyncio",
        "asyncpg",
    ]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str) -> "logger":  # type: ignore[valid-type]
    """Get a logger instance bound to a name."""
    return logger.bind(name=name)


def bind_context(**kwargs: Any) -> None:
    """Bind request-scoped values included in every subsequent log entry.

    Example:
        bind_context(request_id="abc-123", user_id="user-456")
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def clear_context() -> None:
    """Clear all context variables; called at the start of each request."""
    _log_context.set({})


def unbind_context(*keys: str) -> None:
    """Remove specific context variables."""
    current = _log_context.get().copy()
    for key in keys:
        current.pop(key, None)
    _log_context.set(current)


def get_context() -> dict[str, Any]:
    """Get a copy of the current logging context."""
    return _log_context.get().copy()


__all__ = [
    "bind_context",
    "clear_context",
    "get_context",
    "get_logger",
    "logger",
    "redact",
    "setup_logging",
    "unbind_context",
]
