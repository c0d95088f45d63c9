"""Unit tests for ID token claim validation."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest
from freezegun import freeze_time
from jose import jwt

from marketguard.oauth.id_token import (
    audience_matches,
    decode_jwt_unverified,
    issuer_matches,
    validate_id_token_claims,
)


pytestmark = pytest.mark.unit

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
ISSUER = "https://accounts.google.com"
CLIENT_ID = "client-123"
NONCE = "nonce-abc"


def make_token(**overrides: Any) -> str:
    claims: dict[str, Any] = {
        "iss": ISSUER,
        "aud": CLIENT_ID,
        "nonce": NONCE,
        "sub": "user-1",
        "exp": int(NOW.timestamp()) + 3600,
        "iat": int(NOW.timestamp()),
    }
    claims.update(overrides)
    claims = {k: v for k, v in claims.items() if v is not None}
    # Signature is not checked by these functions
    return jwt.encode(claims, "unused-secret", algorithm="HS256")


def validate(token: str, issuer: str = ISSUER) -> Any:
    return validate_id_token_claims(token, issuer, CLIENT_ID, NONCE, now=NOW)


class TestDecodeJwtUnverified:
    """Tests for decode_jwt_unverified."""

    def test_decodes_header_and_payload(self) -> None:
        decoded = decode_jwt_unverified(make_token())

        assert decoded is not None
        assert decoded.header["alg"] == "HS256"
        assert decoded.payload["sub"] == "user-1"

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d", "!!.??.##"])
    def test_rejects_malformed(self, token: str) -> None:
        assert decode_jwt_unverified(token) is None


class TestValidateIdTokenClaims:
    """Tests for validate_id_token_claims."""

    def test_valid_token(self) -> None:
        result = validate(make_token())

        assert result.valid is True
        assert result.error is None
        assert result.claims is not None
        assert result.claims["sub"] == "user-1"

    def test_invalid_format(self) -> None:
        assert validate("not-a-jwt").error == "Invalid token format"

    def test_wrong_issuer(self) -> None:
        assert validate(make_token(iss="https://evil.example.com")).error == (
            "Invalid issuer"
        )

    def test_wrong_audience(self) -> None:
        assert validate(make_token(aud="someone-else")).error == "Invalid audience"

    def test_audience_list_containing_client(self) -> None:
        assert validate(make_token(aud=["other", CLIENT_ID])).valid is True

    def test_wrong_nonce(self) -> None:
        assert validate(make_token(nonce="replayed")).error == "Invalid nonce"

    def test_missing_expiration(self) -> None:
        token = make_token(exp=None)

        assert validate(token).error == "Missing expiration"

    def test_expired(self) -> None:
        token = make_token(exp=int(NOW.timestamp()) - 1)

        assert validate(token).error == "Token expired"

    def test_expires_exactly_now(self) -> None:
        token = make_token(exp=int(NOW.timestamp()))

        assert validate(token).error == "Token expired"

    def test_not_yet_valid(self) -> None:
        token = make_token(nbf=int(NOW.timestamp()) + 60)

        assert validate(token).error == "Token not yet valid"

    def test_checks_run_in_order(self) -> None:
        """Should report the issuer before the nonce when both are wrong."""
        token = make_token(iss="https://evil.example.com", nonce="replayed")

        assert validate(token).error == "Invalid issuer"

    @freeze_time("2026-03-01 12:00:00")
    def test_defaults_to_current_time(self) -> None:
        token = make_token(exp=int(NOW.timestamp()) + 5)

        result = validate_id_token_claims(token, ISSUER, CLIENT_ID, NONCE)

        assert result.valid is True


class TestIssuerMatching:
    """Tests for tenant-templated issuers."""

    TEMPLATE = "https://login.microsoftonline.com/{tenantid}/v2.0"

    def test_tenant_placeholder_matches_one_segment(self) -> None:
        assert issuer_matches(
            "https://login.microsoftonline.com/9188040d-6c67/v2.0", self.TEMPLATE
        )

    @pytest.mark.parametrize(
        "issuer",
        [
            "https://login.microsoftonline.com/a/b/v2.0",
            "https://evil.example.com/tenant/v2.0",
            "https://login.microsoftonline.com//v2.0",
            "https://login.microsoftonline.com/tenant/v2.0/extra",
        ],
    )
    def test_tenant_placeholder_rejects_other_shapes(self, issuer: str) -> None:
        assert issuer_matches(issuer, self.TEMPLATE) is False

    def test_non_string_issuer(self) -> None:
        assert issuer_matches(None, ISSUER) is False
        assert issuer_matches(42, ISSUER) is False


class TestAudienceMatching:
    def test_string_and_list(self) -> None:
        assert audience_matches(CLIENT_ID, CLIENT_ID)
        assert audience_matches([CLIENT_ID], CLIENT_ID)
        assert not audience_matches(None, CLIENT_ID)
        assert not audience_matches([], CLIENT_ID)
