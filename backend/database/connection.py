"""
Async PostgreSQL engine and sessions.

The engine is built lazily from Settings so importing the package never
opens a connection.
"""

from functools import lru_cache
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from config import get_settings

logger = logging.getLogger(__name__)

REQUIRED_TABLES = frozenset({"companies", "company_users", "invoices"})


class Base(DeclarativeBase):
    pass


@lru_cache()
def get_engine() -> AsyncEngine:
    return create_async_engine(
        get_settings().get_database_url(),
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


@lru_cache()
def get_session_factory() -> async_sessionmaker:
    return async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def get_db():
    """FastAPI dependency yielding one session per request"""
    async with get_session_factory()() as session:
        yield session


async def ping() -> None:
    """Round trip to the database; raises on any connection failure."""
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))


async def init_db() -> None:
    """Check connectivity at startup and warn about missing tables."""
    async with get_engine().connect() as conn:
        result = await conn.execute(
            text("SELECT table_name FROM information_schema.tables WHERE table_schema = 'public'")
        )
        missing = REQUIRED_TABLES - {row[0] for row in result}

    if missing:
        logger.warning(f"Missing tables: {sorted(missing)}")
    logger.info("PostgreSQL connection established")
