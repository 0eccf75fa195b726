"""
asyncpg pool shared by the PostgreSQL task and credential stores.

The pool is created by the API startup hook when DATABASE_URL is set; without
it the service runs on the in-memory stores and nothing here is touched.
"""

import logging
import pathlib
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import asyncpg

logger = logging.getLogger(__name__)

SCHEMA_PATH = pathlib.Path(__file__).with_name("schema.sql")

_pool: Optional[asyncpg.Pool] = None


async def init_db_pool(
    database_url: str,
    min_size: int = 1,
    max_size: int = 10,
    command_timeout: float = 30.0,
) -> asyncpg.Pool:
    global _pool

    if _pool is not None:
        return _pool

    logger.info(f"Opening PostgreSQL pool (min={min_size}, max={max_size})")
    try:
        _pool = await asyncpg.create_pool(
            dsn=database_url,
            min_size=min_size,
            max_size=max_size,
            command_timeout=command_timeout,
        )
    except (OSError, asyncpg.PostgresError) as e:
        logger.error(f"Could not connect to PostgreSQL: {e}")
        raise
    return _pool


async def close_db_pool() -> None:
    global _pool

    if _pool is None:
        return
    pool, _pool = _pool, None
    await pool.close()
    logger.info("PostgreSQL pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("PostgreSQL pool is not open; call init_db_pool() at startup")
    return _pool


@asynccontextmanager
async def get_connection():
    """
    Borrow one pooled connection:

        async with get_connection() as conn:
            await conn.execute("DELETE FROM tasks WHERE id = $1", task_id)
    """
    async with get_pool().acquire() as conn:
        yield conn


async def execute(query: str, *args: Any) -> str:
    """Run a statement; returns the command tag (e.g. ``"DELETE 1"``)."""
    async with get_connection() as conn:
        return await conn.execute(query, *args)


async def fetch(query: str, *args: Any) -> List[asyncpg.Record]:
    async with get_connection() as conn:
        return await conn.fetch(query, *args)


async def fetchrow(query: str, *args: Any) -> Optional[asyncpg.Record]:
    async with get_connection() as conn:
        return await conn.fetchrow(query, *args)


async def fetchval(query: str, *args: Any) -> Any:
    async with get_connection() as conn:
        return await conn.fetchval(query, *args)


async def init_schema() -> None:
    """Apply schema.sql. Every statement is IF NOT EXISTS, so this runs on each startup."""
    logger.info(f"Applying schema from {SCHEMA_PATH.name}")
    async with get_connection() as conn:
        await conn.execute(SCHEMA_PATH.read_text())


async def health_check() -> Dict[str, Any]:
    try:
        await fetchval("SELECT 1")
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}

    pool = get_pool()
    return {
        "status": "healthy",
        "pool_size": pool.get_size(),
        "pool_idle": pool.get_idle_size(),
    }
