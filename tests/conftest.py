"""
Shared test configuration and fixtures for the accounts service tests.

Provides database setup, session management, a fake Redis, settings and an aiohttp
test client wired to all of them.

Database tests run against TEST_DATABASE_URL when it is set (use a throwaway
PostgreSQL database, tables are created and dropped around each test). Otherwise each
test gets its own SQLite file through aiosqlite.
"""

import os
from unittest.mock import AsyncMock
import pytest
import pytest_asyncio
import fakeredis.aioredis
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from net.tessera.accounts.app.config import (
    DatabaseAppKey,
    DatabaseSessionMakerAppKey,
    HealthGaugeAppKey,
    MetricsClientAppKey,
    RedisClientAppKey,
    SessionAppKey,
    Settings,
)
from net.tessera.accounts.app.metrics import NoOpMetricsClient
from net.tessera.accounts.app.server import start_web_server
from net.tessera.accounts.model.base import Base
import net.tessera.accounts.model.accounts  # noqa: F401
import net.tessera.accounts.model.projects  # noqa: F401
from net.tessera.accounts.security.tokens import TokenAuthority
from tests.test_helpers import TEST_TOKEN_SECRET, FakeHttpSession

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "")


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Create async SQLAlchemy engine with all tables created."""
    if len(TEST_DATABASE_URL) > 0:
        database_url = TEST_DATABASE_URL
    else:
        database_url = f"sqlite+aiosqlite:///{tmp_path / 'accounts.db'}"

    engine = create_async_engine(database_url, echo=False, hide_parameters=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(session_maker):
    """Create async database session for testing."""
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def fake_redis_client():
    """Provide fake Redis client for unit tests."""
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def settings(monkeypatch):
    """Settings for tests, independent of the environment the tests run in."""
    monkeypatch.setenv("TOKEN_SECRET", TEST_TOKEN_SECRET)
    monkeypatch.setenv("EXTERNAL_HOSTNAME", "accounts.example.com")
    monkeypatch.setenv("METRICS_BACKEND", "none")
    monkeypatch.setenv("PASSWORD_HASH_ROUNDS", "4")
    monkeypatch.setenv("LINK_CLIENT_ID", "accounts-test")
    monkeypatch.setenv("LINK_CLIENT_SECRET", "link-client-secret")
    monkeypatch.delenv("COMMENT_FEED_URL", raising=False)
    monkeypatch.delenv("TOKEN_EXPIRY", raising=False)
    monkeypatch.delenv("TOKEN_LEEWAY", raising=False)
    monkeypatch.delenv("SENTRY_DSN", raising=False)
    return Settings()  # type: ignore


@pytest.fixture
def token_authority(settings):
    return TokenAuthority(
        settings.token_secret.get_secret_value(), expiry=settings.token_expiry
    )


@pytest.fixture
def http_session():
    """Stand-in for the external linking service."""
    return FakeHttpSession()


@pytest_asyncio.fixture
async def app(settings, engine, session_maker, fake_redis_client, http_session):
    app = await start_web_server(settings)
    app[DatabaseAppKey] = engine
    app[DatabaseSessionMakerAppKey] = session_maker
    app[RedisClientAppKey] = fake_redis_client
    app[SessionAppKey] = http_session  # type: ignore
    app[MetricsClientAppKey] = NoOpMetricsClient()
    return app


@pytest_asyncio.fixture
async def client(aiohttp_client, app):
    return await aiohttp_client(app)


@pytest_asyncio.fixture
async def broken_store(engine):
    """Drop every table so that storage calls made by handlers fail."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def health_womp(app):
    """Spy on the health gauge of the app while keeping its behaviour."""
    health_gauge = app[HealthGaugeAppKey]
    spy = AsyncMock(wraps=health_gauge.womp)
    health_gauge.womp = spy  # type: ignore
    return spy
