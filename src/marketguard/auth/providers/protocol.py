"""Identity provider protocol (access control layer 1)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable


if TYPE_CHECKING:
    from starlette.requests import Request

    from marketguard.auth.providers.models import AuthResult


@runtime_checkable
class AuthProvider(Protocol):
    """Turns a request credential into an ``AuthResult``.

    Implementations:
        - ``LocalJWTAuthProvider``: session JWTs signed with a shared secret
        - ``HeaderAuthProvider``: identity headers set by a trusted gateway
        - ``DisabledAuthProvider``: every request is anonymous
    """

    @property
    def provider_name(self) -> str:
        """Short name for logging, e.g. 'local_jwt' or 'header'."""
        ...

    async def validate_token(
        self,
        token: str,
        request: Request | None = None,
    ) -> AuthResult:
        """Validate a credential and return the caller.

        Args:
            token: Bearer token or session cookie value. May be empty for
                header-based identity.
            request: Request, for providers that read headers.

        Raises:
            AuthenticationError: If the credential does not identify a caller.
        """
        ...

    async def initialize(self) -> None:
        """Validate configuration; called at startup."""
        ...

    async def shutdown(self) -> None:
        """Release resources; called at shutdown."""
        ...
