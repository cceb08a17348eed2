"""
Abstract interfaces for the two collaborators of the cache-through resolver.

`BlockStore` is the durable cache, `BlockSource` the upstream chain endpoint.
The resolver and sampler depend only on these protocols, so the PostgreSQL
store and the JSON-RPC client can be swapped for other implementations.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable

from blockcache.domain.models import (
    ApiRequestLog,
    BlockRecord,
    InsertOutcome,
    ProgramTransactionCount,
    WindowedStats,
)


@runtime_checkable
class BlockStore(Protocol):
    """
    Durable storage for cached blocks, program counts and request logs.

    Implementations raise `StorageError` for storage failures and never
    overwrite an existing block or program count.
    """

    async def get_block(self, slot: int) -> Optional[BlockRecord]:
        ...

    async def put_block(self, record: BlockRecord) -> None:
        """
        Insert a block record.

        Raises
        ------
        ConflictError
            If a record for the slot already exists. The stored record is left
            unchanged.
        """
        ...

    async def get_block_by_height(self, height: int) -> Optional[BlockRecord]:
        ...

    async def slot_for_height(self, height: int) -> Optional[int]:
        ...

    async def get_program_count(self, slot: int, program_id: str) -> Optional[int]:
        ...

    async def put_program_count(self, slot: int, program_id: str, count: int) -> InsertOutcome:
        ...

    async def list_program_counts(
        self, start_slot: int, end_slot: int, program_id: str
    ) -> List[ProgramTransactionCount]:
        ...

    async def list_recent(self, limit: int = 10) -> List[BlockRecord]:
        ...

    async def append_log(self, entry: ApiRequestLog) -> None:
        ...

    async def windowed_stats(self, window_seconds: int) -> WindowedStats:
        ...

    async def total_block_count(self) -> int:
        ...


@runtime_checkable
class BlockSource(Protocol):
    """
    Upstream provider of block data.

    Implementations raise `NotFoundError` when no block exists at a slot and
    `UpstreamError` for transport or protocol failures. They do not retry.
    """

    async def fetch_block(self, slot: int) -> BlockRecord:
        ...

    async def fetch_transaction_count_only(self, slot: int) -> int:
        """
        Return the same count as `fetch_block(slot).transaction_count` using a
        reduced-detail request.
        """
        ...

    async def fetch_current_head(self) -> int:
        ...

    async def fetch_transactions_involving_program(self, slot: int, program_id: str) -> int:
        ...


__all__ = ["BlockSource", "BlockStore"]
