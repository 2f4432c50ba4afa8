"""
Test suite for database configuration and utilities.

Run tests:
    pytest tests/core/db/test_config.py -v
"""


import pytest
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine

from commrelay.core.db.config import (
    AsyncSessionLocal,
    Base,
    async_engine,
    engine_options,
    init_db,
)


class TestDatabaseConfiguration:

    def test_async_engine_is_async_engine(self):
        assert isinstance(async_engine, AsyncEngine)

    def test_async_session_local_is_sessionmaker(self):
        assert callable(AsyncSessionLocal)

    def test_base_is_declarative_base(self):
        assert hasattr(Base, "metadata")
        assert hasattr(Base, "registry")


class TestEngineOptions:

    def test_sqlite_has_no_pool_sizing(self):
        assert engine_options("sqlite+aiosqlite:///:memory:") == {"echo": False}

    def test_postgres_pool(self):
        options = engine_options("postgresql+asyncpg://u:p@db/commrelay", echo=True)

        assert options["echo"] is True
        assert options["pool_size"] == 20
        assert options["pool_pre_ping"] is True


class TestInitDb:

    @pytest.mark.asyncio
    async def test_creates_delivery_records_table(self, db_engine):
        async with db_engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

        assert "delivery_records" in tables

    @pytest.mark.asyncio
    async def test_idempotent(self, db_engine):
        await init_db(db_engine)
