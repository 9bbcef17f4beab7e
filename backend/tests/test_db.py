"""Tests for database pool lifecycle."""

from unittest.mock import AsyncMock, patch

import pytest

from fdr import db
from fdr.config import Settings


@pytest.fixture
def settings():
    with patch(
        "fdr.db.get_settings",
        return_value=Settings(database_url="", supabase_db_url="", db_pool_max_size=4),
    ) as mock:
        yield mock.return_value


class TestPool:
    def test_get_pool_before_init_raises(self):
        with pytest.raises(RuntimeError):
            db.get_pool()

    async def test_init_without_dsn_raises(self, settings):
        with pytest.raises(ValueError):
            await db.init_pool()

    async def test_init_and_close(self, settings):
        pool = AsyncMock()
        with patch("fdr.db.asyncpg.create_pool", AsyncMock(return_value=pool)) as create:
            assert await db.init_pool("postgresql://user:pw@db.example:6543/postgres") is pool
            assert await db.init_pool() is pool  # idempotent
            assert db.get_pool() is pool

            await db.close_pool()

        create.assert_awaited_once()
        assert create.call_args.kwargs["max_size"] == 4
        assert create.call_args.kwargs["statement_cache_size"] == 0
        pool.close.assert_awaited_once()
        with pytest.raises(RuntimeError):
            db.get_pool()


def test_describe_strips_credentials():
    assert db._describe("postgresql://user:pw@db.example:6543/postgres") == (
        "db.example:6543/postgres"
    )
