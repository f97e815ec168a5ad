"""
Pytest configuration and fixtures for the wagering core tests
"""

import pytest
from typing import AsyncGenerator, Callable, Iterable
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from wagering.database.engine import create_engine_for_url
from wagering.database.models import Base


# Test database URL (in-memory SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def test_db_engine():
    """
    Create test database engine
    """
    engine = create_engine_for_url(TEST_DATABASE_URL, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(test_db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session
    """
    async_session_maker = async_sessionmaker(
        test_db_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def sequence_rng() -> Callable[[Iterable[float]], Callable[[], float]]:
    """
    Factory for deterministic rng callables

    The returned callable yields the given values in order, then repeats the
    last one.
    """

    def factory(values: Iterable[float]) -> Callable[[], float]:
        values = list(values)
        state = {"i": 0}

        def rng() -> float:
            idx = min(state["i"], len(values) - 1)
            state["i"] += 1
            return values[idx]

        return rng

    return factory


@pytest.fixture
def fail_ledger_inserts(db_session):
    """
    Make ledger inserts from one source fail at the database

    A BEFORE INSERT trigger aborts the statement, the way a broken ledger
    table would in production.
    """

    async def install(source: str) -> None:
        await db_session.execute(
            text(
                f"CREATE TRIGGER fail_ledger_{source} BEFORE INSERT ON ledger_events "
                f"WHEN NEW.source = '{source}' "
                f"BEGIN SELECT RAISE(ABORT, 'ledger unavailable'); END"
            )
        )
        await db_session.commit()

    return install
