"""Async database session configuration."""
from functools import lru_cache
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker

from tunesync.core.config import get_settings

@lru_cache()
def get_async_engine() -> AsyncEngine:
    """Create the async engine from settings on first use."""
    settings = get_settings()
    url = settings.async_database_url
    if url.startswith("sqlite"):
        return create_async_engine(url)

    # Reasonable defaults for PostgreSQL
    return create_async_engine(
        url,
        pool_pre_ping=True,  # Enable connection pool pre-ping
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_timeout=30,     # Timeout after 30 seconds
        pool_recycle=1800    # Recycle connections after 30 minutes
    )

@lru_cache()
def get_session_factory() -> async_sessionmaker:
    """Create async session factory bound to the shared engine."""
    return async_sessionmaker(
        get_async_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )
