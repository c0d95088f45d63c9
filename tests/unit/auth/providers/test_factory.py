"""Unit tests for the identity provider factory."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from marketguard.auth.providers.exceptions import (
    AuthenticationError,
    ConfigurationError,
)
from marketguard.auth.providers.factory import (
    _DEV_JWT_SECRET,
    DisabledAuthProvider,
    _get_jwt_secret,
    create_auth_provider,
)
from marketguard.auth.providers.header import HeaderAuthProvider
from marketguard.auth.providers.local_jwt import LocalJWTAuthProvider
from marketguard.core.config import AuthMode


pytestmark = pytest.mark.unit


@pytest.fixture
def mock_settings() -> MagicMock:
    settings = MagicMock()
    settings.auth_mode_enum = AuthMode.LOCAL_JWT
    settings.JWT_SECRET_KEY = "test-secret-key-for-testing-32chars"
    settings.is_production = False
    settings.auth.jwt.algorithm = "HS256"
    settings.auth.jwt.issuer = None
    settings.auth.jwt.audience = []
    settings.auth.headers.user_id = "X-User-ID"
    settings.auth.headers.roles = "X-User-Roles"
    settings.auth.headers.permissions = "X-User-Permissions"
    return settings


class TestCreateAuthProvider:
    """Tests for create_auth_provider."""

    def test_creates_local_jwt_provider(self, mock_settings: MagicMock) -> None:
        provider = create_auth_provider(settings=mock_settings)

        assert isinstance(provider, LocalJWTAuthProvider)
        assert provider.secret_key == mock_settings.JWT_SECRET_KEY
        assert provider.audience is None

    def test_creates_header_provider(self, mock_settings: MagicMock) -> None:
        mock_settings.auth_mode_enum = AuthMode.HEADER

        provider = create_auth_provider(settings=mock_settings)

        assert isinstance(provider, HeaderAuthProvider)

    def test_creates_disabled_provider(self, mock_settings: MagicMock) -> None:
        mock_settings.auth_mode_enum = AuthMode.DISABLED

        provider = create_auth_provider(settings=mock_settings)

        assert isinstance(provider, DisabledAuthProvider)


class TestGetJwtSecret:
    """Tests for _get_jwt_secret."""

    def test_returns_configured_secret(self, mock_settings: MagicMock) -> None:
        assert _get_jwt_secret(mock_settings) == mock_settings.JWT_SECRET_KEY

    def test_falls_back_to_dev_secret_outside_production(
        self, mock_settings: MagicMock
    ) -> None:
        mock_settings.JWT_SECRET_KEY = ""

        assert _get_jwt_secret(mock_settings) == _DEV_JWT_SECRET

    def test_raises_in_production_without_secret(
        self, mock_settings: MagicMock
    ) -> None:
        mock_settings.JWT_SECRET_KEY = ""
        mock_settings.is_production = True

        with pytest.raises(ConfigurationError, match="JWT_SECRET_KEY"):
            _get_jwt_secret(mock_settings)


class TestDisabledAuthProvider:
    async def test_everyone_is_anonymous(self) -> None:
        """Should reject every token."""
        with pytest.raises(AuthenticationError):
            await DisabledAuthProvider().validate_token("any-token")
