"""PKCE primitives (RFC 7636).

Random values come from :mod:`secrets`; the challenge method is always S256.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import string


# RFC 3986 unreserved characters
UNRESERVED_CHARSET = string.ascii_letters + string.digits + "-._~"

CODE_VERIFIER_LENGTH = 64
STATE_LENGTH = 32
NONCE_LENGTH = 32
CODE_CHALLENGE_METHOD = "S256"


def generate_random_string(length: int) -> str:
    """Return ``length`` characters drawn uniformly from the unreserved set."""
    if length < 1:
        msg = f"length must be positive, got {length}"
        raise ValueError(msg)
    return "".join(secrets.choice(UNRESERVED_CHARSET) for _ in range(length))


def generate_code_verifier() -> str:
    """Generate a code verifier (RFC 7636 allows 43 to 128 characters)."""
    return generate_random_string(CODE_VERIFIER_LENGTH)


def generate_code_challenge(verifier: str) -> str:
    """Derive the S256 code challenge: unpadded base64url of SHA-256(verifier)."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_state() -> str:
    """Generate the CSRF ``state`` parameter."""
    return generate_random_string(STATE_LENGTH)


def generate_nonce() -> str:
    """Generate the OIDC ``nonce`` bound into the ID token."""
    return generate_random_string(NONCE_LENGTH)


def validate_state(received: str | None, stored: str | None) -> bool:
    """Compare the callback ``state`` with the stored one in constant time.

    Empty values and values of different length never match. Equal-length
    values are compared without short-circuiting.
    """
    if not received or not stored:
        return False
    if len(received) != len(stored):
        return False
    return hmac.compare_digest(received.encode("utf-8"), stored.encode("utf-8"))


__all__ = [
    "CODE_CHALLENGE_METHOD",
    "CODE_VERIFIER_LENGTH",
    "NONCE_LENGTH",
    "STATE_LENGTH",
    "UNRESERVED_CHARSET",
    "generate_code_challenge",
    "generate_code_verifier",
    "generate_nonce",
    "generate_random_string",
    "generate_state",
    "validate_state",
]
