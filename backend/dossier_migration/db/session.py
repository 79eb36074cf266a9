"""Async engines, session factories and transaction scope."""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from dossier_migration.core.config import settings
from dossier_migration.core.exceptions import StagingStoreError

logger = logging.getLogger(__name__)


def build_engine(url: str, pool_size: int = 20, max_overflow: int = 40, echo: bool = False) -> AsyncEngine:
    """Create an async engine.

    Pool arguments only apply to server databases; SQLite engines ignore them.
    """
    kwargs = {"echo": echo, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=pool_size, max_overflow=max_overflow)
    return create_async_engine(url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@asynccontextmanager
async def unit_of_work(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Open a session with a transaction that commits on success.

    Any exception, cancellation included, rolls the transaction back.
    Connection failures while beginning are re-raised as StagingStoreError.

    Args:
        session_factory: Factory producing the session

    Yields:
        Session with an open transaction
    """
    async with session_factory() as session:
        try:
            await session.connection()
        except (OperationalError, InterfaceError, DBAPIError, OSError) as e:
            bind_url = session.bind.url if session.bind is not None else None
            host = bind_url.host if bind_url is not None else None
            database = bind_url.database if bind_url is not None else None
            logger.error(f"Failed to begin staging transaction (host={host}, database={database}): {e}")
            raise StagingStoreError(
                f"Could not open staging transaction on {host}/{database}: {e}",
                host=host,
                database=database,
                timeout=settings.DB_COMMAND_TIMEOUT_SECONDS,
            ) from e

        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise
