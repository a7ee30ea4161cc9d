import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from labmatch.config.settings import JobBackend, Settings
from labmatch.infra.database import Base, get_session
from labmatch.main import create_app

# Import models to ensure they're registered
from labmatch.v1.infra.jobs import models as job_models  # noqa: F401
from labmatch.v1.matching import models as matching_models  # noqa: F401


@pytest.fixture
def settings() -> Settings:
    """Settings for a single-process test run with fast retries."""
    return Settings(
        environment="test",
        job_backend=JobBackend.MEMORY,
        job_poll_interval_ms=10,
        job_backoff_base_ms=0,
        matching_rotation_seed="test-seed",
    )


@pytest.fixture
def mock_session() -> AsyncMock:
    """AsyncSession stand-in for unit tests."""
    session = AsyncMock(spec=AsyncSession)
    session.add = MagicMock()
    return session


@pytest.fixture
def session_factory(mock_session):
    """async_sessionmaker stand-in yielding ``mock_session``."""

    @asynccontextmanager
    async def factory():
        yield mock_session

    return factory


@pytest.fixture
async def test_engine():
    """Create a test database engine, only when PostgreSQL is configured."""
    database_url = os.getenv("DATABASE_URL")

    if not database_url or "postgresql" not in database_url:
        pytest.skip("No PostgreSQL database available for testing")

    engine = create_async_engine(database_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.execute(text("DELETE FROM jobs"))
        await conn.execute(text("DELETE FROM evaluation_records"))
        await conn.execute(text("DELETE FROM selection_edges"))
        await conn.execute(text("DELETE FROM researchers"))
    await engine.dispose()


@pytest.fixture
def db_session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(db_session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with db_session_factory() as session:
        yield session


@pytest.fixture
def app(mock_session):
    """Application with the database session replaced by a mock."""
    app = create_app()

    async def override_session():
        yield mock_session

    app.dependency_overrides[get_session] = override_session

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> TestClient:
    """Test client without lifespan, so no queue or engine is built."""
    return TestClient(app)
