"""
Database connection factory utilities for the block cache.

Composes the PostgreSQL DSN from settings and opens psycopg async connection
pools. There is no process-wide pool: callers own the pool they create and
must close it (see `BlockStore.open`/`BlockStore.close`).

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

from typing import Optional

import psycopg
from psycopg_pool import AsyncConnectionPool, PoolTimeout
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from blockcache.config import Settings, get_settings
from blockcache.utils.logging import get_logger

log = get_logger(__name__)


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, PoolTimeout)),
    reraise=True,
)
async def create_async_pool(
    dsn: str,
    min_size: int = 1,
    max_size: int = 10,
    timeout: float = 10.0,
) -> AsyncConnectionPool:
    """
    Open an asynchronous connection pool with automatic retry.

    Retries up to 3 times with exponential backoff when the server is not
    reachable yet. Each attempt uses a fresh pool; a pool that failed to fill
    is closed before the next attempt.

    Parameters
    ----------
    dsn : str
        PostgreSQL connection string.
    min_size : int
        Minimum number of idle connections to keep.
    max_size : int
        Maximum total connections in the pool.
    timeout : float
        Seconds to wait for `min_size` connections to be established.

    Returns
    -------
    AsyncConnectionPool
        An open pool owned by the caller.
    """
    pool = AsyncConnectionPool(conninfo=dsn, min_size=min_size, max_size=max_size, open=False)
    try:
        await pool.open(wait=True, timeout=timeout)
    except Exception:
        await pool.close()
        log.warning("Connection pool failed to open", extra={"min_size": min_size})
        raise
    return pool


__all__ = ["build_dsn", "create_async_pool"]
