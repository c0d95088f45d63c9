"""Session JWT identity provider.

Session tokens are issued by the marketplace's sign-in service and signed
with a secret shared with this service, so they are validated locally.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from marketguard.auth.providers.exceptions import (
    ConfigurationError,
    TokenExpiredError,
    TokenInvalidError,
)
from marketguard.auth.providers.models import AuthResult
from marketguard.observability.logging import get_logger


if TYPE_CHECKING:
    from starlette.requests import Request

logger = get_logger(__name__)

_ACCEPTED_TOKEN_TYPES = ("access", "session")


def _as_list(value: Any) -> list[str]:
    """Claims may carry roles as a list or a space/comma separated string."""
    if not value:
        return []
    if isinstance(value, str):
        return [part for part in value.replace(",", " ").split() if part]
    return [str(part) for part in value]


class LocalJWTAuthProvider:
    """Validates session JWTs with the configured secret key.

    Attributes:
        secret_key: HS256 secret, or public key for RS256.
        algorithm: JWT signing algorithm.
        issuer: Expected ``iss`` claim, not checked when None.
        audience: Expected ``aud`` values, not checked when None.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        issuer: str | None = None,
        audience: list[str] | None = None,
    ) -> None:
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience if audience else None

    @property
    def provider_name(self) -> str:
        return "local_jwt"

    async def validate_token(
        self,
        token: str,
        _request: Request | None = None,
    ) -> AuthResult:
        """Validate a session JWT.

        Raises:
            TokenExpiredError: If the token has expired.
            TokenInvalidError: If the token is missing, malformed, or fails
                signature or claim checks.
        """
        if not token:
            msg = "No session token"
            raise TokenInvalidError(msg)

        decode_kwargs: dict[str, Any] = {"algorithms": [self.algorithm]}
        if self.issuer:
            decode_kwargs["issuer"] = self.issuer
        if self.audience:
            decode_kwargs["audience"] = self.audience
        else:
            decode_kwargs["options"] = {"verify_aud": False}

        try:
            payload = jwt.decode(token, self.secret_key, **decode_kwargs)
        except ExpiredSignatureError as e:
            logger.debug("Session token expired")
            msg = "Token has expired"
            raise TokenExpiredError(msg) from e
        except JWTClaimsError as e:
            logger.warning("Session token claims rejected", error=str(e))
            raise TokenInvalidError(str(e)) from e
        except JWTError as e:
            logger.warning("Session token validation failed", error=str(e))
            msg = "Invalid token"
            raise TokenInvalidError(msg) from e

        token_type = payload.get("type", "access")
        if token_type not in _ACCEPTED_TOKEN_TYPES:
            msg = f"Invalid token type: {token_type}"
            raise TokenInvalidError(msg)

        user_id = payload.get("sub")
        if not user_id:
            msg = "Token missing 'sub' claim"
            raise TokenInvalidError(msg)

        return AuthResult(
            user_id=str(user_id),
            roles=_as_list(payload.get("roles")),
            permissions=_as_list(payload.get("permissions")),
            session_id=payload.get("sid"),
            token_type=token_type,
            issuer=payload.get("iss"),
            expires_at=payload.get("exp"),
            raw_claims=payload,
        )

    async def initialize(self) -> None:
        if not self.secret_key:
            msg = "JWT secret key is not configured"
            raise ConfigurationError(msg)

        logger.info(
            "LocalJWTAuthProvider initialized",
            algorithm=self.algorithm,
            issuer_validation=self.issuer is not None,
            audience_validation=self.audience is not None,
        )

    async def shutdown(self) -> None:
        logger.debug("LocalJWTAuthProvider shutdown")
