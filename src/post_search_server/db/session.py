"""
Database Session Management

Provides the async SQLAlchemy engine and session factory for PostgreSQL.
Both are built once at application startup from settings and handed to the
components that need them.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .models import Base

logger = logging.getLogger("post_search.db")


def create_engine(database_url: str) -> AsyncEngine:
    """Create the async engine. No connection is opened until first use."""
    return create_async_engine(
        database_url,
        echo=False,  # Set True for SQL debugging
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """
    Create the pgvector extension and all tables if they do not exist.
    """
    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured")
