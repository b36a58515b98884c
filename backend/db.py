"""
Database connection pool.

All hub database access goes through the pool created here. Stores receive
the pool explicitly; routes never touch it.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager

import asyncpg

from backend.config import settings

pool: asyncpg.Pool | None = None


async def init_pool(dsn: str | None = None) -> asyncpg.Pool:
    """
    Initialize the connection pool.
    Called once at application startup.
    """
    global pool
    pool = await asyncpg.create_pool(
        dsn=dsn or settings.DATABASE_URL,
        min_size=settings.DB_POOL_MIN_SIZE,
        max_size=settings.DB_POOL_MAX_SIZE,
        command_timeout=60,
        init=_init_connection,
    )
    return pool


async def close_pool() -> None:
    """
    Close the connection pool.
    Called at application shutdown.
    """
    global pool
    if pool is not None:
        await pool.close()
        pool = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    """
    Initialize each new connection.
    JSON/JSONB columns decode to Python dicts and lists.
    """
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )
    await conn.set_type_codec(
        "json",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


@asynccontextmanager
async def transaction(source: asyncpg.Pool | None = None):
    """
    Acquire a connection and open a transaction on it.

    Usage:
        async with transaction(pool) as conn:
            row = await conn.fetchrow("SELECT ...")

    Yields:
        asyncpg.Connection inside a transaction
    """
    source = source or pool
    if source is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")

    async with source.acquire() as conn:
        async with conn.transaction():
            yield conn
