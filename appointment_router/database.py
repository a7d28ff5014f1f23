"""Database configuration and connection management."""

from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from appointment_router.config import settings


def to_async_url(url: str) -> str:
    """Convert a sync PostgreSQL URL to its asyncpg form."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine(url: str, application_name: str | None = None) -> AsyncEngine:
    """
    Create an async engine with connection pooling.

    Args:
        url: Database URL (sync PostgreSQL URLs are converted to asyncpg)
        application_name: Name reported to PostgreSQL for this pool

    Returns:
        Async engine
    """
    async_url = to_async_url(url)
    options: dict[str, Any] = {"echo": settings.debug, "pool_pre_ping": True}

    if async_url.startswith("postgresql+asyncpg://"):
        options.update(
            pool_size=10,
            max_overflow=20,
            pool_recycle=3600,
            connect_args={
                "server_settings": {
                    "application_name": application_name or settings.app_name,
                },
            },
        )

    return create_async_engine(async_url, **options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Async session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def check_database_connection(engine: AsyncEngine) -> bool:
    """Check if database connection is healthy."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
