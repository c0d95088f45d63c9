"""OpenID Connect ID token claim checks.

These checks read the token payload without verifying its signature. They
bind the token to this flow (issuer, audience, nonce, lifetime); signature
verification against the provider's JWKS is left to the resource servers
that consume the token.
"""

from __future__ import annotations

import re
from datetime import datetime
from functools import lru_cache
from typing import Any

from jose import jwt
from jose.exceptions import JWTError
from pydantic import BaseModel

from marketguard.oauth.session import utc_now


TENANT_PLACEHOLDER = "{tenantid}"


class DecodedJWT(BaseModel):
    """Header and payload of a JWT, unverified."""

    header: dict[str, Any]
    payload: dict[str, Any]


class IdTokenValidation(BaseModel):
    """Outcome of :func:`validate_id_token_claims`."""

    valid: bool
    error: str | None = None
    claims: dict[str, Any] | None = None


def decode_jwt_unverified(token: str) -> DecodedJWT | None:
    """Decode a compact JWT without checking its signature.

    Returns:
        The decoded header and payload, or None when the token is not
        three base64url segments carrying JSON objects.
    """
    if not token or token.count(".") != 2:
        return None
    try:
        header = jwt.get_unverified_header(token)
        payload = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    if not isinstance(header, dict) or not isinstance(payload, dict):
        return None
    return DecodedJWT(header=header, payload=payload)


@lru_cache(maxsize=32)
def _issuer_pattern(expected_issuer: str) -> re.Pattern[str]:
    # The tenant placeholder stands for exactly one path segment
    parts = [re.escape(part) for part in expected_issuer.split(TENANT_PLACEHOLDER)]
    return re.compile("[^/?#]+".join(parts))


def issuer_matches(issuer: Any, expected_issuer: str) -> bool:
    """Exact issuer match, or a tenant-templated match on the same host."""
    if not isinstance(issuer, str) or not issuer:
        return False
    if issuer == expected_issuer:
        return True
    if TENANT_PLACEHOLDER not in expected_issuer:
        return False
    return _issuer_pattern(expected_issuer).fullmatch(issuer) is not None


def audience_matches(audience: Any, expected_audience: str) -> bool:
    """The ``aud`` claim is the client id, or a list containing it."""
    if isinstance(audience, str):
        return audience == expected_audience
    if isinstance(audience, list):
        return expected_audience in audience
    return False


def _numeric(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def validate_id_token_claims(
    id_token: str,
    expected_issuer: str,
    expected_audience: str,
    expected_nonce: str,
    now: datetime | None = None,
) -> IdTokenValidation:
    """Check that an ID token was minted for this flow.

    Args:
        id_token: Compact-serialized ID token from the token response.
        expected_issuer: Provider issuer; may contain ``{tenantid}``.
        expected_audience: This deployment's client id.
        expected_nonce: Nonce stored with the PKCE session.
        now: Reference time, defaults to the current UTC time.

    Returns:
        IdTokenValidation with ``valid`` set and, on failure, the first
        violated check in ``error``.
    """
    decoded = decode_jwt_unverified(id_token)
    if decoded is None:
        return IdTokenValidation(valid=False, error="Invalid token format")

    claims = decoded.payload
    timestamp = (now or utc_now()).timestamp()

    if not issuer_matches(claims.get("iss"), expected_issuer):
        return IdTokenValidation(valid=False, error="Invalid issuer")

    if not audience_matches(claims.get("aud"), expected_audience):
        return IdTokenValidation(valid=False, error="Invalid audience")

    if claims.get("nonce") != expected_nonce:
        return IdTokenValidation(valid=False, error="Invalid nonce")

    exp = _numeric(claims.get("exp"))
    if exp is None:
        return IdTokenValidation(valid=False, error="Missing expiration")
    if timestamp >= exp:
        return IdTokenValidation(valid=False, error="Token expired")

    if "nbf" in claims:
        nbf = _numeric(claims["nbf"])
        if nbf is None or timestamp < nbf:
            return IdTokenValidation(valid=False, error="Token not yet valid")

    return IdTokenValidation(valid=True, claims=claims)


__all__ = [
    "DecodedJWT",
    "IdTokenValidation",
    "audience_matches",
    "decode_jwt_unverified",
    "issuer_matches",
    "validate_id_token_claims",
]
