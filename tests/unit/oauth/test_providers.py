"""Unit tests for the OAuth provider registry."""

from __future__ import annotations

import pytest

from marketguard.core.config import Settings
from marketguard.core.config.settings import (
    OAuthClientSettings,
    OAuthProviderSettings,
    OAuthSettings,
)
from marketguard.oauth.exceptions import OAuthError
from marketguard.oauth.providers import (
    BUILTIN_PROVIDERS,
    configured_providers,
    load_provider_registry,
    resolve_client_config,
)


pytestmark = pytest.mark.unit


@pytest.fixture
def settings() -> Settings:
    return Settings(
        OAUTH_CLIENT_SECRETS={"github": "gh-secret"},
        oauth=OAuthSettings(
            clients={
                "google": OAuthClientSettings(
                    client_id="g-client",
                    redirect_uri="https://market.example.com/oauth/google/callback",
                ),
                "github": OAuthClientSettings(
                    client_id="gh-client",
                    redirect_uri="https://market.example.com/oauth/github/callback",
                    scopes=["read:user"],
                ),
                "keycloak": OAuthClientSettings(
                    client_id="kc-client",
                    redirect_uri="https://market.example.com/oauth/keycloak/callback",
                ),
                "unknown": OAuthClientSettings(
                    client_id="x",
                    redirect_uri="https://market.example.com/cb",
                ),
            },
            providers={
                "keycloak": OAuthProviderSettings(
                    authorization_url="https://sso.example.com/auth",
                    token_url="https://sso.example.com/token",
                    issuer="https://sso.example.com/realms/market",
                    scopes=["openid"],
                )
            },
        ),
    )


class TestRegistry:
    """Tests for load_provider_registry."""

    def test_builtins_are_present(self) -> None:
        assert {"google", "microsoft", "github", "apple"} <= set(BUILTIN_PROVIDERS)

    def test_google_requests_offline_access(self) -> None:
        params = BUILTIN_PROVIDERS["google"].extra_authorize_params

        assert params == {"access_type": "offline", "prompt": "consent"}

    def test_configured_provider_is_added(self, settings: Settings) -> None:
        registry = load_provider_registry(settings)

        assert registry["keycloak"].token_url == "https://sso.example.com/token"
        assert registry["keycloak"].scopes == ("openid",)


class TestResolveClientConfig:
    """Tests for resolve_client_config."""

    def test_defaults_to_provider_scopes(self, settings: Settings) -> None:
        client = resolve_client_config("google", settings)

        assert client.name == "google"
        assert client.client_id == "g-client"
        assert client.scopes == ("openid", "email", "profile")
        assert client.client_secret is None

    def test_client_scopes_and_secret(self, settings: Settings) -> None:
        client = resolve_client_config("github", settings)

        assert client.scopes == ("read:user",)
        assert client.client_secret == "gh-secret"

    @pytest.mark.parametrize("name", ["apple", "unknown", "nope"])
    def test_unconfigured_provider(self, settings: Settings, name: str) -> None:
        """Should reject providers without both a definition and a client."""
        with pytest.raises(OAuthError) as exc_info:
            resolve_client_config(name, settings)

        assert exc_info.value.code == OAuthError.UNKNOWN_PROVIDER

    def test_configured_providers(self, settings: Settings) -> None:
        assert configured_providers(settings) == ["github", "google", "keycloak"]
