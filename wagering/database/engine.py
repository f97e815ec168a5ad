"""
Database engine configuration for the voucher wagering core

PostgreSQL (asyncpg) in production, SQLite (aiosqlite) for local runs and
tests. Both must support SAVEPOINTs: ledger writes run nested so a failed
insert never poisons the bet transaction.
"""

import logging
from typing import Any, AsyncGenerator

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool

from config.config import DATABASE_URL, ENVIRONMENT

logger = logging.getLogger(__name__)


# Global engine and session maker
engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def enable_sqlite_savepoints(eng: AsyncEngine) -> None:
    """
    Let SQLAlchemy own BEGIN on SQLite

    The sqlite3 driver starts transactions lazily and on its own, which breaks
    SAVEPOINT / ROLLBACK TO inside the ORM transaction.
    """

    @event.listens_for(eng.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_engine_for_url(url: str, **overrides: Any) -> AsyncEngine:
    """
    Build an async engine for a database URL

    Args:
        url: SQLAlchemy URL (postgresql+asyncpg or sqlite+aiosqlite)
        overrides: Extra create_async_engine arguments (tests pass poolclass)

    Returns:
        AsyncEngine
    """
    if url.startswith("sqlite"):
        eng = create_async_engine(
            url,
            connect_args={"check_same_thread": False},
            **overrides,
        )
        enable_sqlite_savepoints(eng)
        return eng

    is_production = ENVIRONMENT == "production"
    options: dict = {
        "poolclass": AsyncAdaptedQueuePool,
        "pool_size": 10 if is_production else 5,
        "max_overflow": 20 if is_production else 10,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "connect_args": {
            "statement_cache_size": 0,
            "server_settings": {"application_name": "wagering_core"},
        },
    }
    options.update(overrides)
    return create_async_engine(url, **options)


def get_engine() -> AsyncEngine:
    """Process-wide engine for DATABASE_URL"""
    global engine

    if engine is None:
        engine = create_engine_for_url(DATABASE_URL)
        logger.info(f"Database engine created - Environment: {ENVIRONMENT}, dialect: {engine.dialect.name}")

    return engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global AsyncSessionLocal

    if AsyncSessionLocal is None:
        AsyncSessionLocal = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    return AsyncSessionLocal


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one session per request

    Services commit their own work; anything left open when a handler fails
    is rolled back here, which also releases row locks.
    """
    session_maker = get_session_maker()
    async with session_maker() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error(f"Session error: {e}", exc_info=True)
            raise


async def dispose_engine() -> None:
    """Close pooled connections on application shutdown"""
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
        engine = None
        AsyncSessionLocal = None


async def check_connection() -> bool:
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection check: OK")
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}", exc_info=True)
        return False
