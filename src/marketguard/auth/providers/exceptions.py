"""Identity provider exceptions.

The dependency layer treats every ``AuthenticationError`` as "no caller",
so a bad credential falls through to the Layer 1 login redirect.
"""

from __future__ import annotations


class AuthProviderError(Exception):
    """Base exception for identity provider errors."""


class AuthenticationError(AuthProviderError):
    """Raised when a credential cannot be turned into a caller."""


class TokenExpiredError(AuthenticationError):
    """Raised when a session token has expired."""


class TokenInvalidError(AuthenticationError):
    """Raised when a session token is malformed or its signature fails."""


class ConfigurationError(AuthProviderError):
    """Raised when the identity provider is misconfigured."""
