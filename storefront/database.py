"""
Async database engine, session factory and declarative base.
"""

import logging
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

Base = declarative_base()


def create_engine(database_url: str, **kwargs) -> AsyncEngine:
    """Create an async engine; SQLite connections get foreign key enforcement."""
    new_engine = create_async_engine(database_url, echo=settings.debug, **kwargs)

    if new_engine.dialect.name == "sqlite":
        @event.listens_for(new_engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = create_engine(settings.database_url)
AsyncSessionLocal = create_session_factory(engine)


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield one session per request."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db(bind: AsyncEngine = None):
    """Create all tables."""
    # Register every mapped table on Base.metadata
    from . import models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
