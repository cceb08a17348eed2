"""
In-memory test doubles for the block store and the block source.
"""

from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from blockcache.domain.models import (
    ApiRequestLog,
    BlockRecord,
    InsertOutcome,
    ProgramTransactionCount,
    WindowedStats,
)
from blockcache.errors import ConflictError, NotFoundError, StorageError


def make_block(slot: int, transaction_count: int, height: Optional[int] = None) -> BlockRecord:
    return BlockRecord(
        slot=slot,
        height=height,
        time=1_760_940_000 + slot,
        parent_slot=max(slot - 1, 0),
        transaction_count=transaction_count,
        block_hash=f"hash-{slot}",
        previous_block_hash=f"hash-{max(slot - 1, 0)}",
        rewards=[],
    )


class InMemoryBlockStore:
    """
    Dict-backed `BlockStore`.

    `stale_reads` lists slots whose first `get_block` misses even though a row
    is stored, which reproduces a concurrent writer winning the insert race.
    """

    def __init__(
        self,
        blocks: Iterable[BlockRecord] = (),
        stale_reads: Iterable[int] = (),
        fail_log_appends: bool = False,
    ) -> None:
        self.blocks: Dict[int, BlockRecord] = {block.slot: block for block in blocks}
        self.heights: Dict[int, int] = {}
        self.program_counts: Dict[Tuple[int, str], int] = {}
        self.logs: List[ApiRequestLog] = []
        self.put_calls: Counter = Counter()
        self._stale_reads: Set[int] = set(stale_reads)
        self.fail_log_appends = fail_log_appends

    async def get_block(self, slot: int) -> Optional[BlockRecord]:
        if slot in self._stale_reads:
            self._stale_reads.discard(slot)
            return None
        return self.blocks.get(slot)

    async def put_block(self, record: BlockRecord) -> None:
        self.put_calls[record.slot] += 1
        if record.slot in self.blocks:
            raise ConflictError(f"Slot {record.slot} already cached", slot=record.slot)
        self.blocks[record.slot] = record

    async def get_block_by_height(self, height: int) -> Optional[BlockRecord]:
        slot = await self.slot_for_height(height)
        return self.blocks.get(slot) if slot is not None else None

    async def slot_for_height(self, height: int) -> Optional[int]:
        if height in self.heights:
            return self.heights[height]
        for block in self.blocks.values():
            if block.height == height:
                return block.slot
        return None

    async def get_program_count(self, slot: int, program_id: str) -> Optional[int]:
        return self.program_counts.get((slot, program_id))

    async def put_program_count(self, slot: int, program_id: str, count: int) -> InsertOutcome:
        if (slot, program_id) in self.program_counts:
            return InsertOutcome.ALREADY_PRESENT
        self.program_counts[(slot, program_id)] = count
        return InsertOutcome.INSERTED

    async def list_program_counts(
        self, start_slot: int, end_slot: int, program_id: str
    ) -> List[ProgramTransactionCount]:
        return [
            ProgramTransactionCount(slot=slot, program_id=pid, count=count)
            for (slot, pid), count in sorted(self.program_counts.items())
            if pid == program_id and start_slot <= slot < end_slot
        ]

    async def list_recent(self, limit: int = 10) -> List[BlockRecord]:
        return sorted(self.blocks.values(), key=lambda b: b.slot, reverse=True)[: max(1, min(limit, 100))]

    async def append_log(self, entry: ApiRequestLog) -> None:
        if self.fail_log_appends:
            raise StorageError("request log table unavailable")
        self.logs.append(entry)

    async def windowed_stats(self, window_seconds: int) -> WindowedStats:
        if not self.logs:
            return WindowedStats()
        return WindowedStats(
            total_requests=len(self.logs),
            cache_hits=sum(1 for entry in self.logs if entry.cache_hit),
            avg_response_time_ms=sum(e.response_time_ms for e in self.logs) / len(self.logs),
        )

    async def total_block_count(self) -> int:
        return len(self.blocks)


class ScriptedBlockSource:
    """
    `BlockSource` answering from fixed per-slot transaction counts.

    Slots missing from `counts` are reported as skipped (`NotFoundError`);
    slots in `failures` raise the given error instead.
    """

    def __init__(
        self,
        counts: Mapping[int, int],
        program_counts: Optional[Mapping[int, int]] = None,
        failures: Optional[Mapping[int, Exception]] = None,
        head: int = 0,
        heights: Optional[Mapping[int, int]] = None,
    ) -> None:
        self.counts = dict(counts)
        self.program_counts = dict(program_counts or {})
        self.failures = dict(failures or {})
        self.head = head
        self.heights = dict(heights or {})
        self.block_fetches: Counter = Counter()
        self.count_fetches: Counter = Counter()
        self.program_fetches: Counter = Counter()

    def _check(self, slot: int) -> int:
        if slot in self.failures:
            raise self.failures[slot]
        if slot not in self.counts:
            raise NotFoundError(f"No block at slot {slot}", slot=slot)
        return self.counts[slot]

    async def fetch_block(self, slot: int) -> BlockRecord:
        self.block_fetches[slot] += 1
        return make_block(slot, self._check(slot), height=self.heights.get(slot))

    async def fetch_transaction_count_only(self, slot: int) -> int:
        self.count_fetches[slot] += 1
        return self._check(slot)

    async def fetch_current_head(self) -> int:
        return self.head

    async def fetch_transactions_involving_program(self, slot: int, program_id: str) -> int:
        self.program_fetches[slot] += 1
        self._check(slot)
        return self.program_counts.get(slot, 0)


__all__ = ["InMemoryBlockStore", "ScriptedBlockSource", "make_block"]
