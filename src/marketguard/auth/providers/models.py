"""Identity provider models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class AuthResult(BaseModel):
    """A validated caller, independent of how it was authenticated.

    Attributes:
        user_id: Unique identifier of the user (``sub`` claim).
        roles: Role names assigned to the user.
        permissions: Permissions granted directly, on top of the roles.
        session_id: Identifier of the sign-in session (``sid`` claim).
        token_type: Kind of credential that was validated.
        issuer: Token issuer (``iss`` claim).
        expires_at: Expiration timestamp (``exp`` claim).
        raw_claims: Original claims, for debugging.
    """

    user_id: str = Field(..., description="User identifier from token 'sub' claim")
    roles: list[str] = Field(default_factory=list, description="User roles")
    permissions: list[str] = Field(default_factory=list, description="User permissions")
    session_id: str | None = Field(default=None, description="Sign-in session id")
    token_type: str = Field(default="access", description="Type of validated token")
    issuer: str | None = Field(default=None, description="Token issuer")
    expires_at: int | None = Field(default=None, description="Expiration timestamp")
    raw_claims: dict[str, Any] = Field(
        default_factory=dict,
        description="Original token claims",
    )

    model_config = {"frozen": True}
