"""
Configuration Module for the Accounts Service

This module defines the configuration system for the accounts service, using Pydantic
for settings validation and dependency injection through AppKeys.

The configuration follows these principles:
1. Environment-based configuration, loaded once at startup
2. Strong validation and typing through Pydantic
3. Dependency injection pattern using aiohttp's app context
4. Secrets never have literal defaults in code

The Settings class serves as the central configuration point. All application components
access settings and shared resources through typed AppKeys rather than module globals.

Key configuration areas include:
- Service identification and networking
- Database and cache connections
- Token signing and password hashing
- Third-party account linking
- Background processing configuration
- Monitoring and observability
"""

import asyncio
from typing import Final, Optional
import logging
from pydantic import (
    AliasChoices,
    Field,
    RedisDsn,
    SecretStr,
    field_validator,
)
from pydantic_settings import BaseSettings
from aiohttp import web
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)
from aiohttp import ClientSession
from redis import asyncio as redis

from net.tessera.accounts.app.metrics import MetricsClient
from net.tessera.accounts.model.comments import CommentSnapshot
from net.tessera.accounts.model.health import HealthGauge
from net.tessera.accounts.security.tokens import TokenAuthority


logger = logging.getLogger(__name__)

MIN_TOKEN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """
    Application settings for the accounts service.

    Values are loaded from environment variables with defaults suitable for development,
    except for the token signing secret which must always be provided by the environment.

    Settings are organized into the following categories:
    - Environment and debugging
    - Network and service identification
    - Database and cache connections
    - Token signing and password hashing
    - Third-party account linking
    - Comment polling
    - Monitoring and observability
    """

    # Environment and debugging settings
    debug: bool = False
    """
    Enable debug mode for verbose logging.
    Set with DEBUG=true environment variable.
    """

    # Network and service identification settings
    http_port: int = Field(alias="port", default=5100)
    """
    HTTP port for the service to listen on.
    Set with PORT environment variable.
    """

    external_hostname: str = "localhost:5100"
    """
    Public hostname for the service, used for generating callback URLs.
    Set with EXTERNAL_HOSTNAME environment variable.
    """

    # Monitoring and error reporting
    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    # Database and cache connections
    redis_dsn: RedisDsn = Field(
        "redis://valkey:6379/1?decode_responses=True",
        validation_alias=AliasChoices("redis_dsn", "redis_url"),
    )  # type: ignore
    """
    Redis connection string used for pending link requests.
    Set with REDIS_DSN or REDIS_URL environment variables.
    """

    pg_dsn: str = Field(
        "postgresql+asyncpg://postgres:password@db/accounts",
        validation_alias=AliasChoices("pg_dsn", "database_url"),
    )
    """
    SQLAlchemy async connection string for the account store.
    Set with PG_DSN or DATABASE_URL environment variables.
    """

    # Token signing and password hashing
    token_secret: SecretStr
    """
    Symmetric secret used to sign and verify session tokens (required, no default).
    Set with TOKEN_SECRET environment variable.
    """

    token_expiry: int = 3600
    """
    Lifetime of issued session tokens in seconds.
    Set with TOKEN_EXPIRY environment variable.
    Default: 3600 (1 hour)
    """

    token_leeway: int = 0
    """
    Clock skew in seconds tolerated when checking token expiry.
    Set with TOKEN_LEEWAY environment variable.
    """

    password_hash_rounds: int = Field(default=10, ge=4, le=31)
    """
    bcrypt cost factor used when hashing account secrets.
    Set with PASSWORD_HASH_ROUNDS environment variable.
    Default: 10
    """

    # Third-party account linking
    link_client_id: str = "accounts"
    """Client identifier presented to the external authorization service."""

    link_client_secret: SecretStr = SecretStr("")
    """Client secret presented when exchanging a one-time code."""

    link_authorize_url: str = "https://auth.example.com/authorize"
    """External endpoint the user is redirected to when linking."""

    link_token_url: str = "https://auth.example.com/token"
    """External endpoint used to exchange a one-time code for an access token."""

    link_profile_url: str = "https://auth.example.com/user"
    """External endpoint returning the linked user's profile."""

    link_handle_field: str = "login"
    """Field of the external profile holding the third-party handle."""

    link_request_expiry: int = 600
    """
    Seconds a pending link request stays valid.
    Set with LINK_REQUEST_EXPIRY environment variable.
    """

    link_default_destination: str = "/"
    """Redirect destination after linking if none was requested."""

    # Comment polling
    comment_feed_url: Optional[str] = None
    """
    JSON comment feed polled by the background task. Polling is disabled when unset.
    Set with COMMENT_FEED_URL environment variable.
    """

    comment_poll_interval: int = 300
    """Seconds between two comment feed polls."""

    # Monitoring and observability settings
    metrics_backend: str = "telegraf"
    """
    Metrics backend, either 'telegraf' or 'none'.
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    @field_validator("token_secret")
    @classmethod
    def check_token_secret(cls, v: SecretStr) -> SecretStr:
        """
        Reject signing secrets that are too short to be safely used with HS256.

        Raises:
            ValueError: If the secret has fewer than MIN_TOKEN_SECRET_LENGTH characters
        """
        if len(v.get_secret_value()) < MIN_TOKEN_SECRET_LENGTH:
            raise ValueError(
                f"token_secret must be at least {MIN_TOKEN_SECRET_LENGTH} characters"
            )
        return v

    @field_validator("metrics_backend")
    @classmethod
    def check_metrics_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("telegraf", "none"):
            raise ValueError("metrics_backend must be 'telegraf' or 'none'")
        return v


def token_authority_from_settings(settings: Settings) -> TokenAuthority:
    """Build the token signing and verification component from loaded settings."""
    return TokenAuthority(
        settings.token_secret.get_secret_value(),
        expiry=settings.token_expiry,
        leeway=settings.token_leeway,
    )


LINK_REQUEST_PREFIX = "link_request"
"""
Redis key prefix for pending third-party link requests.
Keys are `link_request:<state>`, values are serialized LinkRequest objects.
"""

# Application context keys for dependency injection
SettingsAppKey: Final = web.AppKey("settings", Settings)
"""AppKey for accessing the application settings"""

DatabaseAppKey: Final = web.AppKey("database", AsyncEngine)
"""AppKey for accessing the SQLAlchemy async database engine"""

DatabaseSessionMakerAppKey: Final = web.AppKey(
    "database_session_maker", async_sessionmaker[AsyncSession]
)
"""AppKey for accessing the SQLAlchemy async session factory"""

SessionAppKey: Final = web.AppKey("http_session", ClientSession)
"""AppKey for accessing the shared aiohttp client session"""

RedisClientAppKey: Final = web.AppKey("redis_client", redis.Redis)
"""AppKey for accessing the Redis client"""

HealthGaugeAppKey: Final = web.AppKey("health_gauge", HealthGauge)
"""AppKey for accessing the health monitoring gauge"""

MetricsClientAppKey: Final = web.AppKey("metrics_client", MetricsClient)
"""AppKey for accessing the metrics client"""

TokenAuthorityAppKey: Final = web.AppKey("token_authority", TokenAuthority)
"""AppKey for the component that signs and verifies session tokens"""

TickHealthTaskAppKey: Final = web.AppKey("tick_health_task", asyncio.Task[None])
"""AppKey for the background task that monitors service health"""

CommentSnapshotAppKey: Final = web.AppKey("comment_snapshot", CommentSnapshot)
"""AppKey for the state owned by the comment polling task"""

CommentPollTaskAppKey: Final = web.AppKey("comment_poll_task", asyncio.Task[None])
"""AppKey for the background task that polls the comment feed"""
