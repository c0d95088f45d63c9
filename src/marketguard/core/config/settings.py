"""Application configuration using Pydantic Settings with YAML support.

This module provides centralized configuration management with:
- YAML-based configuration files organized by domain
- Environment-specific overrides (local, test, development, staging, production)
- Environment variable loading for secrets
- Type validation and coercion
- Caching for performance
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from typing import TYPE_CHECKING, Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .yaml_source import MultiYamlConfigSettingsSource


if TYPE_CHECKING:
    from pydantic_settings import PydanticBaseSettingsSource


class AuthMode(StrEnum):
    """How the caller's identity (Layer 1) is resolved.

    - LOCAL_JWT: Validate session JWTs locally using a shared secret
    - HEADER: Trust X-User-* headers set by a gateway (testing/development only)
    - DISABLED: Every request is anonymous
    """

    LOCAL_JWT = "local_jwt"
    HEADER = "header"
    DISABLED = "disabled"


class SessionStoreBackend(StrEnum):
    """Where in-flight PKCE sessions are kept."""

    MEMORY = "memory"
    REDIS = "redis"


class AuditSinkBackend(StrEnum):
    """Where buffered security events are written."""

    POSTGRES = "postgres"
    BEACON = "beacon"
    MEMORY = "memory"


def parse_mapping(v: str | dict[str, str]) -> dict[str, str]:
    """Parse ``provider=secret,provider=secret`` strings into a mapping."""
    if isinstance(v, str):
        pairs = (item.split("=", 1) for item in v.split(",") if "=" in item)
        return {key.strip(): value.strip() for key, value in pairs}
    return v


# =============================================================================
# Nested Configuration Models (from YAML)
# =============================================================================


class AppSettings(BaseModel):
    """Application identity settings."""

    name: str = "Marketguard"
    version: str = "0.1.0"
    debug: bool = False


class ServerSettings(BaseModel):
    """Server configuration settings."""

    host: str = "127.0.0.1"
    port: int = 8000


class ApiSettings(BaseModel):
    """API configuration settings."""

    v1_prefix: str = "/api/v1/marketguard"
    cors_origins: list[str] = []


class JwtSettings(BaseModel):
    """Session JWT settings."""

    algorithm: str = "HS256"
    issuer: str | None = None
    audience: list[str] = []


class AuthHeaderSettings(BaseModel):
    """Header-based identity settings."""

    user_id: str = "X-User-ID"
    roles: str = "X-User-Roles"
    permissions: str = "X-User-Permissions"


class AuthSettings(BaseModel):
    """Identity and access-denial behaviour."""

    mode: str = "local_jwt"
    jwt: JwtSettings = JwtSettings()
    headers: AuthHeaderSettings = AuthHeaderSettings()
    login_path: str = "/auth"
    denied_redirect: str = "/"


class OAuthProviderSettings(BaseModel):
    """Endpoints for a provider that is not part of the built-in registry."""

    authorization_url: str
    token_url: str
    userinfo_url: str | None = None
    jwks_url: str | None = None
    issuer: str | None = None
    scopes: list[str] = []
    extra_authorize_params: dict[str, str] = {}


class OAuthClientSettings(BaseModel):
    """Per-provider client registration for this deployment."""

    client_id: str
    redirect_uri: str
    scopes: list[str] | None = None


class OAuthSettings(BaseModel):
    """PKCE OAuth engine settings."""

    session_ttl: int = 600
    token_exchange_timeout: float = 10.0
    session_cookie: str = "mg_oauth_session"
    session_store: str = "memory"
    fetch_user_info: bool = False
    clients: dict[str, OAuthClientSettings] = {}
    providers: dict[str, OAuthProviderSettings] = {}


class AuditSettings(BaseModel):
    """Security audit trail settings."""

    sink: str = "postgres"
    flush_interval: float = 5.0
    max_buffer_size: int = 50
    max_queue_size: int = 1000
    write_timeout: float = 5.0
    shutdown_deadline: float = 2.0
    beacon_url: str | None = None
    beacon_timeout: float = 2.0
    table: str = "security_audit_log"


class RedisSettings(BaseModel):
    """Redis configuration settings."""

    host: str = "localhost"
    port: int = 6379
    user: str | None = None  # Redis ACL username (Redis 6.0+)
    session_db: int = 0


class DatabaseSettings(BaseModel):
    """PostgreSQL database configuration settings."""

    enabled: bool = True
    host: str = "localhost"
    port: int = 5432
    name: str = "marketplace"
    db_schema: str = "public"
    user: str | None = None
    min_pool_size: int = 2
    max_pool_size: int = 10
    command_timeout: float = 10.0
    ssl: bool = False


class LoggingSettings(BaseModel):
    """Logging configuration settings."""

    level: str = "INFO"
    format: str = "json"


class MetricsSettings(BaseModel):
    """Metrics configuration settings."""

    enabled: bool = True


class ObservabilitySettings(BaseModel):
    """Observability configuration settings."""

    metrics: MetricsSettings = MetricsSettings()


# =============================================================================
# Main Settings Class
# =============================================================================


class Settings(BaseSettings):
    """Application settings with YAML + environment variable support.

    Configuration is loaded from multiple sources with the following priority
    (highest to lowest):
    1. Environment variables
    2. .env file (secrets only)
    3. Environment-specific YAML files (config/environments/{APP_ENV}/)
    4. Base YAML files (config/base/)
    5. Default values in code

    Environment variables can override any setting using the nested delimiter '__'.
    For example: OAUTH__SESSION_TTL=300 overrides oauth.session_ttl.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        case_sensitive=False,
        env_nested_delimiter="__",
    )

    APP_ENV: str = "development"

    app: AppSettings = AppSettings()
    server: ServerSettings = ServerSettings()
    api: ApiSettings = ApiSettings()
    auth: AuthSettings = AuthSettings()
    oauth: OAuthSettings = OAuthSettings()
    audit: AuditSettings = AuditSettings()
    redis: RedisSettings = RedisSettings()
    database: DatabaseSettings = DatabaseSettings()
    logging: LoggingSettings = LoggingSettings()
    observability: ObservabilitySettings = ObservabilitySettings()

    # =========================================================================
    # Secrets (from .env only - never in YAML)
    # =========================================================================
    JWT_SECRET_KEY: str = ""
    REDIS_PASSWORD: str = ""
    DATABASE_PASSWORD: str = ""

    # Confidential-client secrets per provider ("google=...,github=..." in .env)
    OAUTH_CLIENT_SECRETS: Annotated[
        dict[str, str], NoDecode, BeforeValidator(parse_mapping)
    ] = Field(default_factory=dict)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings loading order.

        Priority (highest to lowest):
        1. init_settings - Values passed to Settings()
        2. env_settings - Environment variables
        3. dotenv_settings - .env file (secrets)
        4. yaml_settings - YAML files (base + environment)
        5. file_secret_settings - Docker secrets
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            MultiYamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # =========================================================================
    # Computed Fields
    # =========================================================================

    @property
    def auth_mode_enum(self) -> AuthMode:
        """Get auth mode as enum with validation."""
        return _parse_enum(AuthMode, self.auth.mode, "auth mode")

    @property
    def session_store_enum(self) -> SessionStoreBackend:
        """Get the PKCE session store backend as enum."""
        return _parse_enum(
            SessionStoreBackend, self.oauth.session_store, "oauth session store"
        )

    @property
    def audit_sink_enum(self) -> AuditSinkBackend:
        """Get the audit sink backend as enum."""
        return _parse_enum(AuditSinkBackend, self.audit.sink, "audit sink")

    @property
    def redis_session_url(self) -> str:
        """Build the Redis URL used for PKCE session storage.

        URL format: redis://[user:password@]host:port/db
        """
        auth_part = ""
        if self.redis.user and self.REDIS_PASSWORD:
            auth_part = f"{self.redis.user}:{self.REDIS_PASSWORD}@"
        elif self.REDIS_PASSWORD:
            auth_part = f":{self.REDIS_PASSWORD}@"
        elif self.redis.user:
            auth_part = f"{self.redis.user}@"

        return (
            f"redis://{auth_part}{self.redis.host}:{self.redis.port}"
            f"/{self.redis.session_db}"
        )

    # =========================================================================
    # Environment Helpers
    # =========================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.APP_ENV == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.APP_ENV == "production"

    @property
    def is_non_production(self) -> bool:
        """Check if running in local, test or development."""
        return self.APP_ENV in ("local", "test", "development")

    @property
    def is_testing(self) -> bool:
        """Check if running in test environment."""
        return self.APP_ENV == "test"


def _parse_enum(enum_cls: type[Any], value: str, label: str) -> Any:
    try:
        return enum_cls(value.lower())
    except ValueError:
        msg = (
            f"Invalid {label}: {value}. "
            f"Must be one of: {', '.join(m.value for m in enum_cls)}"
        )
        raise ValueError(msg) from None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Using lru_cache ensures settings are only loaded once,
    improving performance and consistency.
    """
    return Settings()
