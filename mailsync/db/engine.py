"""Async SQLAlchemy engine and session factory."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from mailsync.config import DatabaseConfig
from mailsync.db.models import Base


def _make_engine(config: DatabaseConfig) -> AsyncEngine:
    if config.url.startswith("sqlite"):
        # SQLite uses its own pool classes, which reject sizing arguments.
        return create_async_engine(config.url, echo=config.echo)
    return create_async_engine(
        config.url,
        echo=config.echo,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_pre_ping=True,
    )


class DatabaseEngine:
    """Holds the engine and its session factory.

    Created once at startup and shared by the status store and the
    repositories.  Every store method opens its own short-lived session so
    each row mutation commits independently.
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self.engine = _make_engine(config)
        self.session = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def create_all(self) -> None:
        """Create any missing tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()
