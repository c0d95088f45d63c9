"""Identity providers (access control layer 1).

The factory creates the provider selected by ``auth.mode``; the lifespan
stores it on ``app.state.auth_provider``.

Usage:
    from marketguard.auth.providers import create_auth_provider

    provider = create_auth_provider(settings)
    result = await provider.validate_token(token, request)
"""

from marketguard.auth.providers.exceptions import (
    AuthenticationError,
    AuthProviderError,
    ConfigurationError,
    TokenExpiredError,
    TokenInvalidError,
)
from marketguard.auth.providers.factory import (
    DisabledAuthProvider,
    create_auth_provider,
)
from marketguard.auth.providers.header import HeaderAuthProvider
from marketguard.auth.providers.local_jwt import LocalJWTAuthProvider
from marketguard.auth.providers.models import AuthResult
from marketguard.auth.providers.protocol import AuthProvider


__all__ = [
    "AuthProvider",
    "AuthProviderError",
    "AuthResult",
    "AuthenticationError",
    "ConfigurationError",
    "DisabledAuthProvider",
    "HeaderAuthProvider",
    "LocalJWTAuthProvider",
    "TokenExpiredError",
    "TokenInvalidError",
    "create_auth_provider",
]
