"""Test configuration and fixtures."""

import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import tunesync.models  # noqa: F401  registers the tables on Base.metadata
from tunesync.db.base import Base
from tunesync.models.identity import FullIdentity, minimal_identity
from tunesync.models.listening import User
from tunesync.services.availability import AvailabilityGate
from tunesync.services.cache_store import LocalCache
from tunesync.services.fallback import FallbackOrchestrator

TEST_USER_ID = "user-123"
TEST_SPOTIFY_ID = "spotify-123"

@pytest.fixture
def now():
    return datetime.now(timezone.utc).replace(microsecond=0)

@pytest_asyncio.fixture
async def engine(tmp_path):
    """SQLite store with the full schema, one file per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

@pytest.fixture
def cache(tmp_path):
    return LocalCache(tmp_path / "cache", max_age_seconds={})

@pytest.fixture
def gate_up():
    return AvailabilityGate(check=AsyncMock(return_value=None))

@pytest.fixture
def gate_down():
    return AvailabilityGate(check=AsyncMock(side_effect=ConnectionRefusedError("connection refused")))

@pytest.fixture
def orchestrator(gate_up, cache):
    return FallbackOrchestrator(gate_up, cache)

@pytest.fixture
def down_orchestrator(gate_down, cache):
    return FallbackOrchestrator(gate_down, cache)

@pytest.fixture
def identity():
    return FullIdentity(
        id=TEST_USER_ID,
        external_id=TEST_SPOTIFY_ID,
        access_token="access-token",
        refresh_token="refresh-token",
        token_expires_at=datetime.now(timezone.utc) + timedelta(hours=1)
    )

@pytest.fixture
def provisional_identity():
    return minimal_identity(f"temp_{TEST_SPOTIFY_ID}")

@pytest_asyncio.fixture
async def stored_user(session_factory, identity):
    """Persist the test identity as a users row."""
    async with session_factory() as session:
        user = User(
            id=identity.id,
            spotify_id=identity.external_id,
            display_name="Test User",
            access_token=identity.access_token,
            refresh_token=identity.refresh_token,
            token_expires_at=identity.token_expires_at
        )
        session.add(user)
        await session.commit()
    return user
