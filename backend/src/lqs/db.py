"""PostgreSQL sessions for the SQL repository.

One engine per process, built from ``Settings`` on first use and
disposed by ``close_engine``. Every repository call runs in its own
``get_db_session`` block, so each call commits on its own.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings
from .logging import get_logger

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the process engine."""
    global _engine, _session_factory
    if _session_factory is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )
        _session_factory = async_sessionmaker(
            _engine, expire_on_commit=False, autoflush=False
        )
        logger.info(
            f"Database engine created for {settings.postgres_host}:"
            f"{settings.postgres_port}/{settings.postgres_db} "
            f"(pool {settings.db_pool_size}+{settings.db_max_overflow})"
        )
    return _session_factory


@asynccontextmanager
async def get_db_session() -> AsyncIterator[AsyncSession]:
    """A session committed when the block exits cleanly, rolled back otherwise.

    Usage:
        async with get_db_session() as session:
            result = await session.execute(query)
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def close_engine() -> None:
    """Dispose of the engine; the next session builds a new one."""
    global _engine, _session_factory
    engine, _engine, _session_factory = _engine, None, None
    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
