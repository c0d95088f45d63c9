"""OAuth flow exceptions.

Raised by the PKCE flow engine and rendered by the API layer in the
OAuth error format (``{"error", "error_description"}``).
"""

from __future__ import annotations

from typing import Any


class OAuthError(Exception):
    """A sign-in attempt failed.

    Attributes:
        code: Machine-readable error code. Either one of the engine codes
            below or the code the provider reported on the callback.
        message: Human-readable description.
        details: Provider response body or other diagnostic data.
    """

    MISSING_CODE = "missing_code"
    INVALID_SESSION = "invalid_session"
    INVALID_STATE = "invalid_state"
    INVALID_PROVIDER = "invalid_provider"
    INVALID_ID_TOKEN = "invalid_id_token"
    TOKEN_EXCHANGE_FAILED = "token_exchange_failed"
    REFRESH_FAILED = "refresh_failed"
    UNKNOWN_PROVIDER = "unknown_provider"

    def __init__(
        self,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)

    def __repr__(self) -> str:
        return f"OAuthError(code={self.code!r}, message={self.message!r})"
