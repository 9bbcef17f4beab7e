"""asyncpg pool lifecycle for the API process and the CLI scripts."""

import logging
from urllib.parse import urlsplit

import asyncpg

from fdr.config import get_settings

logger = logging.getLogger(__name__)

# Owned by the FastAPI lifespan or a script's main(); services get an FdrStore
_pool: asyncpg.Pool | None = None


def _describe(dsn: str) -> str:
    """host:port/database of a DSN, without credentials."""
    parts = urlsplit(dsn)
    host = parts.hostname or "localhost"
    port = f":{parts.port}" if parts.port else ""
    return f"{host}{port}{parts.path}"


async def init_pool(dsn: str | None = None) -> asyncpg.Pool:
    """Create the process-wide pool (idempotent).

    Args:
        dsn: Connection string; defaults to DATABASE_URL / SUPABASE_DB_URL

    Raises:
        ValueError: If no connection string is configured
    """
    global _pool
    if _pool is not None:
        return _pool

    settings = get_settings()
    dsn = dsn or settings.db_connection_string
    if not dsn:
        raise ValueError(
            "Database connection string not configured. "
            "Set DATABASE_URL or SUPABASE_DB_URL environment variable."
        )

    logger.info(
        f"Opening database pool to {_describe(dsn)} "
        f"(size {settings.db_pool_min_size}-{settings.db_pool_max_size})"
    )
    _pool = await asyncpg.create_pool(
        dsn,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=settings.db_command_timeout_seconds,
        statement_cache_size=0,  # Required for PgBouncer transaction mode
    )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        logger.info("Closing database pool")
        await _pool.close()
        _pool = None


def get_pool() -> asyncpg.Pool:
    """Return the initialized pool.

    Raises:
        RuntimeError: If init_pool() has not run (no database configured)
    """
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    return _pool
