"""OAuth sign-in schemas.

Token responses keep the provider's snake_case field names
(``access_token``, ``id_token``); only service-owned wrappers are camelCase.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from marketguard.oauth.flow import TokenResponse
from marketguard.schemas.base import APIRequest, APIResponse


class ProvidersResponse(APIResponse):
    """Providers a user can sign in with."""

    providers: list[str] = Field(..., description="Configured provider ids")


class OAuthCallbackResponse(APIResponse):
    """Successful sign-in."""

    provider: str = Field(..., description="Provider that signed the user in")
    tokens: TokenResponse = Field(..., description="Token endpoint response")
    id_token_claims: dict[str, Any] | None = Field(
        default=None,
        description="Validated ID token claims",
    )
    user_info: dict[str, Any] | None = Field(
        default=None,
        description="Userinfo endpoint response, when fetched",
    )


class RefreshTokenRequest(APIRequest):
    """A refresh token to trade for a new access token."""

    refresh_token: str = Field(..., min_length=1, max_length=4096)
