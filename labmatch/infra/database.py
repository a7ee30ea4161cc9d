"""
Async engine and session wiring shared by the API and worker processes.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from labmatch.config.logging import get_logger
from labmatch.config.settings import Settings, get_settings

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base for the jobs and matching tables."""


def build_engine(settings: Settings, role: str) -> AsyncEngine:
    """Engine for one process role (``api`` or ``worker``)."""
    connect_args = {}
    if settings.database_url.startswith("postgresql+asyncpg"):
        # Shown in pg_stat_activity next to each connection
        connect_args["server_settings"] = {
            "application_name": f"{settings.app_name.lower()}-{role}"
        }

    return create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=True,
        connect_args=connect_args,
        echo=False,
    )


class Database:
    """Engine plus session factory owned by one process."""

    def __init__(self, settings: Settings, role: str = "api"):
        self.settings = settings
        self.role = role
        self.engine = build_engine(settings, role)
        self.SessionLocal = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def close(self) -> None:
        """Dispose of pooled connections."""
        await self.engine.dispose()
        logger.info("database_closed", role=self.role)


# API process database, created on first use
_database: Database | None = None


def get_database(settings: Settings = Depends(get_settings)) -> Database:
    """Get or create the API process database."""
    global _database
    if _database is None:
        _database = Database(settings)
    return _database


async def get_session(
    database: Database = Depends(get_database),
) -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session, rolled back when the request fails."""
    async with database.SessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise

