"""
Database connection and session management for Selo.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from selo.config import settings
from selo.models.base import Base

# Convert sync URL to async
DATABASE_URL = settings.DATABASE_URL.replace(
    "postgresql://", "postgresql+asyncpg://"
)

engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def task_session() -> AsyncGenerator[AsyncSession, None]:
    """Session for one Celery task on an engine of its own.

    Each task runs its coroutine on a new event loop and asyncpg connections
    cannot cross loops, so the engine is built per task and disposed before
    the loop closes.
    """
    task_engine = create_async_engine(DATABASE_URL, pool_pre_ping=True, pool_size=5, max_overflow=10)
    session_maker = async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_maker() as session:
            yield session
    finally:
        await task_engine.dispose()


async def init_db() -> None:
    """Initialize database tables."""
    from selo.models.audit import SiteAudit, SiteAuditPage, SiteAuditCheck, DismissedCheck
    from selo.models.crawl import CrawlQueueEntry

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
