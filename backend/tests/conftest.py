"""Pytest configuration and fixtures."""
from typing import AsyncGenerator, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import dossier_migration.db.models  # noqa: F401
from dossier_migration.api.v1.migration import get_migration_worker
from dossier_migration.db.base import Base
from dossier_migration.db.session import build_engine, build_session_factory, unit_of_work
from dossier_migration.main import app
from dossier_migration.repositories.phase_checkpoint_repository import PhaseCheckpointRepository
from dossier_migration.services.error_tracker import GlobalErrorTracker
from fakes import FakeContentRepository


async def _create_database(url: str):
    engine = build_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


@pytest_asyncio.fixture
async def staging_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh SQLite staging database for each test."""
    engine = await _create_database(f"sqlite+aiosqlite:///{tmp_path / 'staging.db'}")
    try:
        yield build_session_factory(engine)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def checkpoint_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Separate SQLite checkpoint database with every phase row created."""
    engine = await _create_database(f"sqlite+aiosqlite:///{tmp_path / 'checkpoint.db'}")
    factory = build_session_factory(engine)
    async with unit_of_work(factory) as session:
        await PhaseCheckpointRepository(session).ensure_phases()
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def content() -> FakeContentRepository:
    """In-memory content repository."""
    return FakeContentRepository()


@pytest.fixture
def error_tracker() -> GlobalErrorTracker:
    return GlobalErrorTracker(max_timeouts=3, max_retry_failures=3, max_total_errors=5)


@pytest.fixture
def worker() -> MagicMock:
    """Stand-in MigrationWorker for endpoint tests."""
    mock = MagicMock()
    mock.get_status = AsyncMock()
    mock.reset = AsyncMock(return_value=4)
    mock.reset_phase = AsyncMock(return_value=1)
    return mock


@pytest.fixture
def client(worker) -> Generator:
    """Create a test client with the migration worker overridden."""

    async def override_get_migration_worker():
        yield worker

    app.dependency_overrides[get_migration_worker] = override_get_migration_worker
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
