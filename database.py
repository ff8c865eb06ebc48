"""
Database Configuration and Session Management
============================================

This module provides the async database engine, session factory, and table creation
functionality for the provider integration and sync service.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from config import Config
from models import Base

logger = logging.getLogger(__name__)


def to_async_database_url(url: str) -> str:
    """Rewrite a plain PostgreSQL URL for the asyncpg driver"""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    # asyncpg uses 'ssl' instead of 'sslmode'
    url = url.replace("sslmode=require", "ssl=require")
    url = url.replace("sslmode=prefer", "ssl=prefer")
    url = url.replace("sslmode=disable", "ssl=disable")
    return url


def build_async_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine, with pool settings only for server databases"""
    async_url = to_async_database_url(url)
    if async_url.startswith("postgresql+asyncpg://"):
        kwargs.setdefault("pool_size", 7)
        kwargs.setdefault("max_overflow", 15)
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_recycle", 3600)
        kwargs.setdefault("pool_timeout", 30)
    return create_async_engine(async_url, echo=False, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,  # rows are read after commit by the sync engine and routes
    )


async_engine = build_async_engine(Config.DATABASE_URL)
AsyncSessionLocal = build_session_factory(async_engine)


@asynccontextmanager
async def get_async_session(session_factory: Optional[async_sessionmaker] = None):
    """
    Async context manager for database sessions.

    Commits on clean exit, rolls back and re-raises on error.

    Usage:
        async with get_async_session() as session:
            result = await session.execute(select(Order).where(...))
    """
    factory = session_factory or AsyncSessionLocal
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def async_managed_session(session_factory: Optional[async_sessionmaker] = None):
    """Async context manager for database sessions"""
    factory = session_factory or AsyncSessionLocal
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception as e:
        logger.error(f"Database session error: {e}")
        await session.rollback()
        raise
    finally:
        await session.close()


async def create_tables(engine: Optional[AsyncEngine] = None):
    """Create all database tables if they don't exist"""
    target = engine or async_engine
    try:
        logger.info("🏗️ Creating database tables (if they don't exist)...")
        async with target.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✅ Database tables ready")
    except Exception as e:
        logger.error(f"❌ Error creating tables: {e}")
        raise


async def check_connection(engine: Optional[AsyncEngine] = None) -> bool:
    """Test database connection"""
    target = engine or async_engine
    try:
        async with target.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("✅ Database connection successful")
        return True
    except Exception as e:
        logger.error(f"❌ Database connection failed: {e}")
        return False
