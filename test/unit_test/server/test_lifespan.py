"""
Unit tests for FastAPI application lifespan management.

Tests verify that the application startup and shutdown events are properly
handled, including database initialization and session creation.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from sqlalchemy import inspect, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlmodel.pool import StaticPool

from dictatemed.core.database import create_sessionmaker
from dictatemed.server.main import lifespan

pytestmark = pytest.mark.asyncio

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def bare_engine():
    """An in-memory engine with no tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    await engine.dispose()


async def table_names(engine: AsyncEngine) -> list:
    async with engine.begin() as conn:
        return await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())


class TestLifespanStartup:
    """Test application startup lifespan events."""

    async def test_lifespan_startup_initializes_database(self):
        with patch("dictatemed.server.main.init_db", new_callable=AsyncMock) as mock_init_db:
            async with lifespan(FastAPI()) as result:
                mock_init_db.assert_awaited_once()
                assert result is None

    async def test_lifespan_logs_startup_and_shutdown(self):
        with (
            patch("dictatemed.server.main.init_db", new_callable=AsyncMock),
            patch("dictatemed.server.main.logger") as mock_logger,
        ):
            async with lifespan(FastAPI()):
                pass

        messages = [c.args[0] for c in mock_logger.info.call_args_list]
        assert any("Starting up" in m for m in messages)
        assert any("Database initialized successfully" in m for m in messages)
        assert any("Shutting down" in m for m in messages)

    async def test_lifespan_survives_database_errors(self):
        with (
            patch("dictatemed.server.main.init_db", new_callable=AsyncMock) as mock_init_db,
            patch("dictatemed.server.main.logger") as mock_logger,
        ):
            mock_init_db.side_effect = OperationalError("CREATE TABLE", {}, Exception("disk I/O error"))

            async with lifespan(FastAPI()):
                pass

        mock_logger.error.assert_called_once()
        assert "Database initialization failed" in mock_logger.error.call_args.args[0]


class TestDatabaseInitialization:
    """Test database initialization functionality."""

    async def test_init_db_creates_tables_for_sqlite(self, bare_engine):
        from dictatemed.core.database import session as session_module

        with patch.object(session_module, "engine", bare_engine):
            await session_module.init_db()

        names = await table_names(bare_engine)
        for expected in ("practices", "users", "letters", "style_profiles", "referral_documents", "audit_logs"):
            assert expected in names

    async def test_init_db_skips_non_sqlite(self, bare_engine):
        from dictatemed.core.database import session as session_module

        with (
            patch.object(session_module, "engine") as mock_engine,
            patch.object(session_module, "create_all", new_callable=AsyncMock) as mock_create_all,
        ):
            mock_engine.url.get_backend_name.return_value = "postgresql"
            await session_module.init_db()

        mock_create_all.assert_not_called()

    async def test_get_session_yields_async_session(self, bare_engine):
        from dictatemed.core.database import session as session_module

        with patch.object(session_module, "async_session_maker", create_sessionmaker(bare_engine)):
            async for session in session_module.get_session():
                assert isinstance(session, AsyncSession)
                assert (await session.execute(text("SELECT 1"))).scalar() == 1
                break

    async def test_engine_is_async_engine(self):
        from dictatemed.core.database import engine

        assert isinstance(engine, AsyncEngine)
