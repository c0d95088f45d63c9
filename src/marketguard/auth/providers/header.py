"""Header-based identity provider.

Trusts identity headers set by an upstream gateway. Use only in development,
tests, or behind a gateway that strips these headers from client requests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketguard.auth.providers.exceptions import AuthenticationError
from marketguard.auth.providers.models import AuthResult
from marketguard.observability.logging import get_logger


if TYPE_CHECKING:
    from starlette.requests import Request

logger = get_logger(__name__)


def _split_header(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class HeaderAuthProvider:
    """Reads the caller from ``X-User-*`` style headers.

    A missing user id header means no caller. Roles and permissions are
    comma separated; an absent roles header means no roles at all, so the
    caller only holds what authentication alone grants.
    """

    def __init__(
        self,
        user_id_header: str = "X-User-ID",
        roles_header: str = "X-User-Roles",
        permissions_header: str = "X-User-Permissions",
    ) -> None:
        self.user_id_header = user_id_header
        self.roles_header = roles_header
        self.permissions_header = permissions_header

    @property
    def provider_name(self) -> str:
        return "header"

    async def validate_token(
        self,
        _token: str,
        request: Request | None = None,
    ) -> AuthResult:
        """Build the caller from request headers; the token is ignored.

        Raises:
            AuthenticationError: If there is no request or no user id header.
        """
        if request is None:
            msg = "HeaderAuthProvider requires the request"
            raise AuthenticationError(msg)

        user_id = request.headers.get(self.user_id_header)
        if not user_id:
            msg = f"Missing required header: {self.user_id_header}"
            raise AuthenticationError(msg)

        roles = _split_header(request.headers.get(self.roles_header, ""))
        permissions = _split_header(request.headers.get(self.permissions_header, ""))

        logger.debug(
            "Authenticated via headers",
            user_id=user_id,
            roles=roles,
            permissions_count=len(permissions),
        )

        return AuthResult(
            user_id=user_id,
            roles=roles,
            permissions=permissions,
            token_type="header",  # noqa: S106 - not a password
            raw_claims={"source": "headers"},
        )

    async def initialize(self) -> None:
        logger.info(
            "HeaderAuthProvider initialized",
            user_id_header=self.user_id_header,
            roles_header=self.roles_header,
        )
        logger.warning(
            "HeaderAuthProvider is enabled - ensure this is only used in "
            "development/testing or behind a trusted gateway"
        )

    async def shutdown(self) -> None:
        logger.debug("HeaderAuthProvider shutdown")
