"""Observability components: logging and metrics."""

from marketguard.observability.logging import (
    bind_context,
    clear_context,
    get_context,
    get_logger,
    logger,
    setup_logging,
    unbind_context,
)
from marketguard.observability.metrics import setup_metrics


__all__ = [
    "bind_context",
    "clear_context",
    "get_context",
    "get_logger",
    "logger",
    "setup_logging",
    "setup_metrics",
    "unbind_context",
]
