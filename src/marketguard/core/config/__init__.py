"""Configuration module with YAML and environment variable support."""

from .settings import (
    AuditSinkBackend,
    AuthMode,
    SessionStoreBackend,
    Settings,
    get_settings,
)


__all__ = [
    "AuditSinkBackend",
    "AuthMode",
    "SessionStoreBackend",
    "Settings",
    "get_settings",
]
