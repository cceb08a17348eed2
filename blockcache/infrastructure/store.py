"""
PostgreSQL-backed persistent store for the block cache.

Three record kinds live here: cached blocks (unique by slot), per-program
transaction counts (unique by slot and program) and the append-only request
log. Cached rows are insert-only: a second insert for the same key never
changes what is stored.

Usage:
    async with PostgresBlockStore(build_dsn()) as store:
        record = await store.get_block(374_563_500)
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from blockcache.config import Settings
from blockcache.domain.models import (
    ApiRequestLog,
    BlockRecord,
    InsertOutcome,
    ProgramTransactionCount,
    WindowedStats,
)
from blockcache.errors import ConflictError, StorageError
from blockcache.infrastructure.db_factory import build_dsn, create_async_pool
from blockcache.infrastructure.schema import SCHEMA_STATEMENTS
from blockcache.utils.logging import get_logger

log = get_logger(__name__)

MAX_RECENT_LIMIT = 100

_BLOCK_COLUMNS = (
    "slot, height, block_time, parent_slot, transaction_count, block_hash, "
    "previous_block_hash, rewards, created_at, updated_at"
)


def _row_to_block(row: Dict[str, Any]) -> BlockRecord:
    rewards = row["rewards"]
    return BlockRecord(
        slot=row["slot"],
        height=row["height"],
        time=row["block_time"],
        parent_slot=row["parent_slot"],
        transaction_count=row["transaction_count"],
        block_hash=row["block_hash"],
        previous_block_hash=row["previous_block_hash"],
        rewards=json.loads(rewards) if rewards is not None else None,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresBlockStore:
    """
    Durable block cache with an explicit open/close lifecycle.

    Every driver error is re-raised as `StorageError`; a unique-key violation
    on `put_block` is re-raised as `ConflictError`.
    """

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 10) -> None:
        self._dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[AsyncConnectionPool] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "PostgresBlockStore":
        return cls(
            build_dsn(settings),
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )

    async def open(self) -> None:
        """Open the connection pool and apply the schema."""
        if self._pool is not None:
            return
        try:
            self._pool = await create_async_pool(
                self._dsn, min_size=self.min_size, max_size=self.max_size
            )
        except psycopg.Error as exc:
            raise StorageError(f"Could not open block store: {exc}") from exc

        try:
            async with self._cursor() as cur:
                for statement in SCHEMA_STATEMENTS:
                    await cur.execute(statement)
        except StorageError:
            await self.close()
            raise
        log.info("Block store opened", extra={"pool_max_size": self.max_size})

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            log.info("Block store closed")

    async def __aenter__(self) -> "PostgresBlockStore":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @asynccontextmanager
    async def _cursor(self) -> AsyncIterator[psycopg.AsyncCursor]:
        if self._pool is None:
            raise StorageError("Block store is not open")
        try:
            async with self._pool.connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    yield cur
        except psycopg.errors.UniqueViolation as exc:
            raise ConflictError(str(exc)) from exc
        except psycopg.Error as exc:
            raise StorageError(f"Storage operation failed: {exc}") from exc

    # Blocks

    async def get_block(self, slot: int) -> Optional[BlockRecord]:
        async with self._cursor() as cur:
            await cur.execute(f"SELECT {_BLOCK_COLUMNS} FROM blocks WHERE slot = %s", (slot,))
            row = await cur.fetchone()
        return _row_to_block(row) if row else None

    async def put_block(self, record: BlockRecord) -> None:
        rewards = json.dumps(record.rewards) if record.rewards is not None else None
        try:
            async with self._cursor() as cur:
                await cur.execute(
                    "INSERT INTO blocks (slot, height, block_time, parent_slot, transaction_count, "
                    "block_hash, previous_block_hash, rewards, created_at, updated_at) "
                    "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, "
                    "COALESCE(%s::timestamptz, now()), COALESCE(%s::timestamptz, now()))",
                    (
                        record.slot,
                        record.height,
                        record.time,
                        record.parent_slot,
                        record.transaction_count,
                        record.block_hash,
                        record.previous_block_hash,
                        rewards,
                        record.created_at,
                        record.updated_at,
                    ),
                )
        except ConflictError:
            raise ConflictError(
                f"Block for slot {record.slot} is already cached", slot=record.slot
            ) from None

    async def get_block_by_height(self, height: int) -> Optional[BlockRecord]:
        async with self._cursor() as cur:
            await cur.execute(
                f"SELECT {_BLOCK_COLUMNS} FROM blocks WHERE height = %s ORDER BY slot LIMIT 1",
                (height,),
            )
            row = await cur.fetchone()
        return _row_to_block(row) if row else None

    async def slot_for_height(self, height: int) -> Optional[int]:
        async with self._cursor() as cur:
            await cur.execute(
                "SELECT slot FROM blocks WHERE height = %s ORDER BY slot LIMIT 1", (height,)
            )
            row = await cur.fetchone()
        return row["slot"] if row else None

    async def list_recent(self, limit: int = 10) -> List[BlockRecord]:
        """Most recently produced cached blocks, slot descending, at most 100."""
        limit = max(1, min(limit, MAX_RECENT_LIMIT))
        async with self._cursor() as cur:
            await cur.execute(
                f"SELECT {_BLOCK_COLUMNS} FROM blocks ORDER BY slot DESC LIMIT %s", (limit,)
            )
            rows = await cur.fetchall()
        return [_row_to_block(row) for row in rows]

    async def total_block_count(self) -> int:
        async with self._cursor() as cur:
            await cur.execute("SELECT COUNT(*) AS count FROM blocks")
            row = await cur.fetchone()
        return int(row["count"]) if row else 0

    # Program counts

    async def get_program_count(self, slot: int, program_id: str) -> Optional[int]:
        async with self._cursor() as cur:
            await cur.execute(
                "SELECT transaction_count FROM program_transaction_counts "
                "WHERE slot = %s AND program_id = %s",
                (slot, program_id),
            )
            row = await cur.fetchone()
        return row["transaction_count"] if row else None

    async def put_program_count(self, slot: int, program_id: str, count: int) -> InsertOutcome:
        async with self._cursor() as cur:
            await cur.execute(
                "INSERT INTO program_transaction_counts (slot, program_id, transaction_count) "
                "VALUES (%s, %s, %s) ON CONFLICT (slot, program_id) DO NOTHING RETURNING slot",
                (slot, program_id, count),
            )
            inserted = await cur.fetchone()
        return InsertOutcome.INSERTED if inserted else InsertOutcome.ALREADY_PRESENT

    async def list_program_counts(
        self, start_slot: int, end_slot: int, program_id: str
    ) -> List[ProgramTransactionCount]:
        """Cached counts for `program_id` with `start_slot <= slot < end_slot`."""
        async with self._cursor() as cur:
            await cur.execute(
                "SELECT slot, program_id, transaction_count, created_at "
                "FROM program_transaction_counts "
                "WHERE slot >= %s AND slot < %s AND program_id = %s ORDER BY slot",
                (start_slot, end_slot, program_id),
            )
            rows = await cur.fetchall()
        return [
            ProgramTransactionCount(
                slot=row["slot"],
                program_id=row["program_id"],
                count=row["transaction_count"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    # Request log

    async def append_log(self, entry: ApiRequestLog) -> None:
        async with self._cursor() as cur:
            await cur.execute(
                "INSERT INTO api_request_logs (endpoint, method, slot, cache_hit, "
                "response_time_ms, status_code, error_message, created_at) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, COALESCE(%s::timestamptz, now()))",
                (
                    entry.endpoint,
                    entry.method,
                    entry.slot,
                    entry.cache_hit,
                    entry.response_time_ms,
                    entry.status_code,
                    entry.error_message,
                    entry.created_at,
                ),
            )

    async def windowed_stats(self, window_seconds: int) -> WindowedStats:
        async with self._cursor() as cur:
            await cur.execute(
                "SELECT COUNT(*) AS total_requests, "
                "COUNT(*) FILTER (WHERE cache_hit) AS cache_hits, "
                "COALESCE(AVG(response_time_ms), 0) AS avg_response_time_ms "
                "FROM api_request_logs "
                "WHERE created_at > now() - make_interval(secs => %s::double precision)",
                (window_seconds,),
            )
            row = await cur.fetchone()
        if not row:
            return WindowedStats()
        return WindowedStats(
            total_requests=int(row["total_requests"]),
            cache_hits=int(row["cache_hits"]),
            avg_response_time_ms=float(row["avg_response_time_ms"]),
        )


__all__ = ["MAX_RECENT_LIMIT", "PostgresBlockStore"]
