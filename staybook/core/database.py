"""Async database engine and session management.

Nothing here is created at import time: the application factory and the
Celery worker each build their own engine and session factory and hand the
factory to the services that need it.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from staybook.core.config import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for the configured database URL."""
    if settings.database_url.startswith("sqlite"):
        # SQLite (tests / local tooling): one connection per checkout, no pool sizing
        return create_async_engine(settings.database_url, echo=settings.database_echo, poolclass=NullPool)

    return create_async_engine(
        settings.database_url,
        echo=settings.database_echo,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

