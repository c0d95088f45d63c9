"""OAuth provider registry.

Built-in providers cover Google, Microsoft, GitHub and Apple. Deployments
add further providers through ``oauth.providers`` in configuration; the
flow engine itself never names a provider except through these records.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from marketguard.oauth.exceptions import OAuthError


if TYPE_CHECKING:
    from collections.abc import Mapping

    from marketguard.core.config import Settings


class OAuthProviderConfig(BaseModel):
    """Endpoints and defaults of an authorization server."""

    provider: str
    authorization_url: str
    token_url: str
    userinfo_url: str | None = None
    jwks_url: str | None = None
    # May contain "{tenantid}" for multi-tenant issuers
    issuer: str | None = None
    scopes: tuple[str, ...] = ()
    extra_authorize_params: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}


class OAuthClientConfig(BaseModel):
    """A provider plus this deployment's client registration."""

    provider: OAuthProviderConfig
    client_id: str
    redirect_uri: str
    scopes: tuple[str, ...]
    client_secret: str | None = None

    model_config = {"frozen": True}

    @property
    def name(self) -> str:
        """Provider identifier, e.g. ``google``."""
        return self.provider.provider


BUILTIN_PROVIDERS: Mapping[str, OAuthProviderConfig] = MappingProxyType(
    {
        "google": OAuthProviderConfig(
            provider="google",
            authorization_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",
            userinfo_url="https://openidconnect.googleapis.com/v1/userinfo",
            jwks_url="https://www.googleapis.com/oauth2/v3/certs",
            issuer="https://accounts.google.com",
            scopes=("openid", "email", "profile"),
            # Request a refresh token and re-prompt so one is always issued
            extra_authorize_params={"access_type": "offline", "prompt": "consent"},
        ),
        "microsoft": OAuthProviderConfig(
            provider="microsoft",
            authorization_url=(
                "https://login.microsoftonline.com/common/oauth2/v2.0/authorize"
            ),
            token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",
            userinfo_url="https://graph.microsoft.com/oidc/userinfo",
            jwks_url="https://login.microsoftonline.com/common/discovery/v2.0/keys",
            issuer="https://login.microsoftonline.com/{tenantid}/v2.0",
            scopes=("openid", "email", "profile"),
        ),
        "github": OAuthProviderConfig(
            provider="github",
            authorization_url="https://github.com/login/oauth/authorize",
            token_url="https://github.com/login/oauth/access_token",
            userinfo_url="https://api.github.com/user",
            scopes=("user:email",),
        ),
        "apple": OAuthProviderConfig(
            provider="apple",
            authorization_url="https://appleid.apple.com/auth/authorize",
            token_url="https://appleid.apple.com/auth/token",
            jwks_url="https://appleid.apple.com/auth/keys",
            issuer="https://appleid.apple.com",
            scopes=("name", "email"),
        ),
    }
)


def load_provider_registry(settings: Settings) -> dict[str, OAuthProviderConfig]:
    """Merge the built-in providers with the ones declared in configuration.

    A configured provider with a built-in name replaces the built-in record.
    """
    registry = dict(BUILTIN_PROVIDERS)
    for name, provider in settings.oauth.providers.items():
        registry[name] = OAuthProviderConfig(
            provider=name,
            authorization_url=provider.authorization_url,
            token_url=provider.token_url,
            userinfo_url=provider.userinfo_url,
            jwks_url=provider.jwks_url,
            issuer=provider.issuer,
            scopes=tuple(provider.scopes),
            extra_authorize_params=dict(provider.extra_authorize_params),
        )
    return registry


def resolve_client_config(
    name: str,
    settings: Settings,
    registry: Mapping[str, OAuthProviderConfig] | None = None,
) -> OAuthClientConfig:
    """Build the client configuration for ``name``.

    Raises:
        OAuthError: ``unknown_provider`` when the provider is not in the
            registry or this deployment has no client registered for it.
    """
    registry = registry if registry is not None else load_provider_registry(settings)
    provider = registry.get(name)
    client = settings.oauth.clients.get(name)
    if provider is None or client is None:
        msg = f"OAuth provider '{name}' is not configured"
        raise OAuthError(OAuthError.UNKNOWN_PROVIDER, msg)

    return OAuthClientConfig(
        provider=provider,
        client_id=client.client_id,
        redirect_uri=client.redirect_uri,
        scopes=tuple(client.scopes) if client.scopes else provider.scopes,
        client_secret=settings.OAUTH_CLIENT_SECRETS.get(name) or None,
    )


def configured_providers(settings: Settings) -> list[str]:
    """Providers that are both known and registered for this deployment."""
    registry = load_provider_registry(settings)
    return sorted(name for name in settings.oauth.clients if name in registry)


__all__ = [
    "BUILTIN_PROVIDERS",
    "OAuthClientConfig",
    "OAuthProviderConfig",
    "configured_providers",
    "load_provider_registry",
    "resolve_client_config",
]
