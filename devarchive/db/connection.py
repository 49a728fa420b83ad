"""Database connection factory.

Provides a singleton async connection to SQLite with WAL mode, plus the
transaction scope used by the sync reconciler.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator

import aiosqlite

from devarchive import config

logger = logging.getLogger("devarchive.db")

_connection: aiosqlite.Connection | None = None
# One lock per connection: coroutines sharing a connection must not
# interleave statements inside each other's transactions.
_transaction_locks: "weakref.WeakKeyDictionary[aiosqlite.Connection, asyncio.Lock]" = weakref.WeakKeyDictionary()


async def configure_connection(conn: aiosqlite.Connection) -> aiosqlite.Connection:
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA foreign_keys=ON")
    await conn.execute("PRAGMA busy_timeout=5000")
    return conn


async def get_connection() -> aiosqlite.Connection:
    """Return the singleton database connection, creating it if needed."""
    global _connection
    if _connection is not None:
        return _connection

    config.DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(str(config.DB_PATH))
    _connection = await configure_connection(conn)
    logger.info(f"Database connection established: {config.DB_PATH}")
    return _connection


async def close_connection() -> None:
    """Close the database connection."""
    global _connection
    if _connection is not None:
        await _connection.close()
        _connection = None
        logger.info("Database connection closed")


@asynccontextmanager
async def transaction(db: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    """Commit on success; roll back and re-raise on any exception."""
    lock = _transaction_locks.get(db)
    if lock is None:
        lock = _transaction_locks[db] = asyncio.Lock()
    async with lock:
        await db.execute("BEGIN")
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        else:
            await db.commit()
