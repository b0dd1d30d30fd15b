"""
WALI-OS Database Connection Setup

The API and the Celery worker share one async engine. Worker tasks wrap
their coroutine in asyncio.run and must dispose the engine before the loop
closes; see walios.tasks.cleanup.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from walios.core.config import settings
from walios.models import Base


def engine_options(url: str) -> dict[str, Any]:
    """Pool options for ``url``; SQLite (local runs, tests) takes no pool sizing."""
    options: dict[str, Any] = {"echo": settings.debug, "pool_pre_ping": True}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=settings.db_pool_recycle_seconds,
        )
    return options


async_engine = create_async_engine(settings.async_database_url, **engine_options(settings.async_database_url))

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    One unit of work: commit on clean exit, roll back if the block raises.

    Used directly by Celery tasks and wrapped by ``get_db`` for routes.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed after the handler returns."""
    async with get_async_session() as session:
        yield session


async def init_db() -> None:
    """Create all tables. Debug runs only; deployed databases use Alembic."""
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await async_engine.dispose()
