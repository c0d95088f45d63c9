"""Identity provider factory."""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketguard.auth.providers.exceptions import (
    AuthenticationError,
    ConfigurationError,
)
from marketguard.auth.providers.header import HeaderAuthProvider
from marketguard.auth.providers.local_jwt import LocalJWTAuthProvider
from marketguard.core.config import AuthMode, get_settings
from marketguard.observability.logging import get_logger


if TYPE_CHECKING:
    from marketguard.auth.providers.models import AuthResult
    from marketguard.auth.providers.protocol import AuthProvider
    from marketguard.core.config import Settings

logger = get_logger(__name__)

# Fixed development secret - safe for local dev, blocked in production
_DEV_JWT_SECRET = "insecure-dev-key-do-not-use-in-production"  # noqa: S105


def _get_jwt_secret(settings: Settings) -> str:
    """JWT secret, which must be set explicitly in production.

    Raises:
        ConfigurationError: If the secret is missing in production.
    """
    if settings.JWT_SECRET_KEY:
        return settings.JWT_SECRET_KEY

    if settings.is_production:
        msg = "JWT_SECRET_KEY must be set in production for local_jwt auth mode"
        raise ConfigurationError(msg)

    logger.warning("Using insecure development JWT secret - do not use in production")
    return _DEV_JWT_SECRET


class DisabledAuthProvider:
    """Identity provider for deployments without sign-in: nobody is a caller.

    Operations that do not require authentication still work; everything
    else is denied at layer 1.
    """

    @property
    def provider_name(self) -> str:
        return "disabled"

    async def validate_token(
        self,
        _token: str,
        _request: object = None,
    ) -> AuthResult:
        msg = "Authentication is disabled"
        raise AuthenticationError(msg)

    async def initialize(self) -> None:
        logger.warning(
            "DisabledAuthProvider initialized - every request is anonymous"
        )

    async def shutdown(self) -> None:
        pass


def create_auth_provider(settings: Settings | None = None) -> AuthProvider:
    """Create the identity provider selected by ``auth.mode``.

    Raises:
        ConfigurationError: If required settings for the mode are missing.
    """
    if settings is None:
        settings = get_settings()

    mode = settings.auth_mode_enum
    logger.info("Creating auth provider", mode=mode.value)

    if mode == AuthMode.DISABLED:
        return DisabledAuthProvider()

    if mode == AuthMode.HEADER:
        return HeaderAuthProvider(
            user_id_header=settings.auth.headers.user_id,
            roles_header=settings.auth.headers.roles,
            permissions_header=settings.auth.headers.permissions,
        )

    if mode == AuthMode.LOCAL_JWT:
        return LocalJWTAuthProvider(
            secret_key=_get_jwt_secret(settings),
            algorithm=settings.auth.jwt.algorithm,
            issuer=settings.auth.jwt.issuer,
            audience=settings.auth.jwt.audience or None,
        )

    msg = f"Unknown auth mode: {mode}"
    raise ConfigurationError(msg)
