"""OAuth 2.0 authorization code flow with PKCE.

Usage:
    from marketguard.oauth import OAuthService, InMemorySessionStore

    service = OAuthService(settings, InMemorySessionStore())
    await service.initialize()
    url = await service.flow("google").initiate_flow(session_key)
"""

from marketguard.oauth.exceptions import OAuthError
from marketguard.oauth.flow import (
    CallbackResult,
    PKCEOAuthFlow,
    TokenResponse,
    build_authorization_url,
)
from marketguard.oauth.id_token import (
    IdTokenValidation,
    decode_jwt_unverified,
    validate_id_token_claims,
)
from marketguard.oauth.pkce import (
    generate_code_challenge,
    generate_code_verifier,
    generate_nonce,
    generate_random_string,
    generate_state,
    validate_state,
)
from marketguard.oauth.providers import (
    BUILTIN_PROVIDERS,
    OAuthClientConfig,
    OAuthProviderConfig,
    load_provider_registry,
    resolve_client_config,
)
from marketguard.oauth.service import OAuthService
from marketguard.oauth.session import (
    InMemorySessionStore,
    PKCESession,
    RedisSessionStore,
    SessionStore,
)


__all__ = [
    "BUILTIN_PROVIDERS",
    "CallbackResult",
    "IdTokenValidation",
    "InMemorySessionStore",
    "OAuthClientConfig",
    "OAuthError",
    "OAuthProviderConfig",
    "OAuthService",
    "PKCEOAuthFlow",
    "PKCESession",
    "RedisSessionStore",
    "SessionStore",
    "TokenResponse",
    "build_authorization_url",
    "decode_jwt_unverified",
    "generate_code_challenge",
    "generate_code_verifier",
    "generate_nonce",
    "generate_random_string",
    "generate_state",
    "load_provider_registry",
    "resolve_client_config",
    "validate_id_token_claims",
    "validate_state",
]
