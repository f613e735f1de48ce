"""Database engine for the Pg* stores; everything is None without DATABASE_URL."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from progression.core.config import SETTINGS

logger = logging.getLogger(__name__)

engine = (
    create_async_engine(SETTINGS.database_url, pool_pre_ping=True)
    if SETTINGS.database_url
    else None
)
async_session_factory = (
    async_sessionmaker(engine, expire_on_commit=False) if engine is not None else None
)


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """One transaction shared by a request or a worker task.

    A lesson completion and its cascading percentage writes commit together
    or roll back together.
    """
    if async_session_factory is None:
        raise RuntimeError("DATABASE_URL is not configured")
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def lifespan_db() -> AsyncGenerator[None, None]:
    if engine is None:
        logger.info("No DATABASE_URL configured, progression state is in memory")
        yield
        return
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Progression database pool disposed")
