"""
Cache-through resolver: the single path from a slot to block data.

Lookups consult the store first. On a miss the block source is queried and the
result written back; once a slot is cached it is never fetched again. Inserts
are optimistic: when a concurrent caller wins the insert race the stored row is
re-read and returned, and the resolution still counts as a miss.

Every public resolution call appends exactly one request-log entry, whether it
succeeds or fails. Log writes are best-effort and never fail a resolution.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from blockcache.abstract import BlockSource, BlockStore
from blockcache.config import Settings
from blockcache.domain.models import (
    ApiRequestLog,
    BlockRecord,
    InsertOutcome,
    ProgramSample,
    Resolution,
)
from blockcache.errors import (
    BlockCacheError,
    ConflictError,
    InvalidInputError,
    NotFoundError,
    StorageError,
    UpstreamError,
)
from blockcache.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

# Failures that only cost the affected slot inside a batch
_PER_ITEM_ERRORS = (NotFoundError, UpstreamError, StorageError)


def parse_slot(value: Any, name: str = "slot") -> int:
    """
    Validate a slot (or height) identifier.

    Accepts non-negative integers and their decimal string form.

    Raises
    ------
    InvalidInputError
        For booleans, non-integers and negative values.
    """
    if isinstance(value, bool):
        raise InvalidInputError(f"Invalid {name}: {value!r}. Must be a non-negative integer.")
    if isinstance(value, str):
        try:
            value = int(value.strip(), 10)
        except ValueError:
            raise InvalidInputError(
                f"Invalid {name}: {value!r}. Must be a non-negative integer."
            ) from None
    if not isinstance(value, int) or value < 0:
        raise InvalidInputError(f"Invalid {name}: {value!r}. Must be a non-negative integer.")
    return value


def parse_program_id(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"Invalid program id: {value!r}")
    return value.strip()


def _loggable_slot(value: Any) -> Optional[int]:
    """The parsed slot for a request-log row, or None when `value` is not a valid slot."""
    if value is None:
        return None
    try:
        return parse_slot(value)
    except InvalidInputError:
        return None


@dataclass
class _Attempt:
    hit: bool = False


class CacheThroughResolver:
    """
    Resolve slots to cached block data, falling back to the block source.

    Parameters
    ----------
    store : BlockStore
        Durable cache; the only shared mutable resource.
    source : BlockSource
        Upstream provider queried on cache misses.
    batch_size : int
        Concurrent in-flight resolutions per batch for `resolve_range`.
    program_batch_size : int
        Concurrent in-flight slots per batch for `resolve_program_range`.
    """

    def __init__(
        self,
        store: BlockStore,
        source: BlockSource,
        batch_size: int = 10,
        program_batch_size: int = 5,
    ) -> None:
        if batch_size < 1 or program_batch_size < 1:
            raise InvalidInputError("Batch sizes must be at least 1")
        self._store = store
        self._source = source
        self.batch_size = batch_size
        self.program_batch_size = program_batch_size

    @classmethod
    def from_settings(
        cls, store: BlockStore, source: BlockSource, settings: Settings
    ) -> "CacheThroughResolver":
        return cls(
            store,
            source,
            batch_size=settings.resolve_batch_size,
            program_batch_size=settings.program_batch_size,
        )

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    async def _append_log(
        self,
        endpoint: str,
        slot: Optional[int],
        hit: bool,
        started: float,
        status_code: int,
        error_message: Optional[str] = None,
    ) -> None:
        entry = ApiRequestLog(
            endpoint=endpoint,
            method="GET",
            slot=slot,
            cache_hit=hit,
            response_time_ms=int((time.perf_counter() - started) * 1000),
            status_code=status_code,
            error_message=error_message,
        )
        try:
            await self._store.append_log(entry)
        except StorageError as exc:
            log.warning(
                "Request log append failed",
                extra={"endpoint": endpoint, "slot": slot, "error": exc.message},
            )

    @asynccontextmanager
    async def _track(self, endpoint: str, slot: Any) -> AsyncIterator[_Attempt]:
        attempt = _Attempt()
        log_slot = _loggable_slot(slot)
        started = time.perf_counter()
        try:
            yield attempt
        except BlockCacheError as exc:
            await self._append_log(
                endpoint, log_slot, attempt.hit, started, exc.status_code, exc.message
            )
            raise
        except Exception as exc:
            await self._append_log(endpoint, log_slot, attempt.hit, started, 500, str(exc))
            raise
        else:
            await self._append_log(endpoint, log_slot, attempt.hit, started, 200)

    async def _lookup_block(self, slot: int, attempt: _Attempt) -> Resolution[BlockRecord]:
        cached = await self._store.get_block(slot)
        if cached is not None:
            attempt.hit = True
            return Resolution(slot=slot, value=cached, hit=True)

        fetched = (await self._source.fetch_block(slot)).stamped(self._now())
        record = fetched
        try:
            await self._store.put_block(fetched)
        except ConflictError:
            log.debug("Slot cached concurrently; using stored record", extra={"slot": slot})
            stored = await self._store.get_block(slot)
            if stored is not None:
                record = stored
        return Resolution(slot=slot, value=record, hit=False)

    async def resolve_block(self, slot: int) -> Resolution[BlockRecord]:
        """
        Resolve one slot to its block record.

        Raises
        ------
        InvalidInputError
            If `slot` is not a non-negative integer.
        NotFoundError
            If no block exists at `slot`. Absence is not cached.
        UpstreamError, StorageError
            On source or store failures.
        """
        async with self._track(f"blocks/{slot}", slot) as attempt:
            return await self._lookup_block(parse_slot(slot), attempt)

    async def resolve_current_block(self) -> Tuple[int, Resolution[BlockRecord]]:
        """Resolve the block at the current head slot."""
        async with self._track("blocks/current", None) as attempt:
            head = await self._source.fetch_current_head()
            return head, await self._lookup_block(head, attempt)

    async def current_head(self) -> int:
        return await self._source.fetch_current_head()

    async def resolve_transaction_count(self, slot: int) -> Resolution[int]:
        """
        Network transaction count for one slot.

        A cached block answers directly; otherwise the reduced-detail count is
        fetched. The bare count is not written to the cache.
        """
        async with self._track(f"blocks/{slot}/transaction-count", slot) as attempt:
            slot = parse_slot(slot)
            cached = await self._store.get_block(slot)
            if cached is not None:
                attempt.hit = True
                return Resolution(slot=slot, value=cached.transaction_count, hit=True)
            count = await self._source.fetch_transaction_count_only(slot)
            return Resolution(slot=slot, value=count, hit=False)

    async def resolve_program_count(self, slot: int, program_id: str) -> Resolution[int]:
        """Number of transactions in `slot` that touch `program_id`."""
        async with self._track(f"programs/{program_id}/blocks/{slot}", slot) as attempt:
            slot = parse_slot(slot)
            program_id = parse_program_id(program_id)
            cached = await self._store.get_program_count(slot, program_id)
            if cached is not None:
                attempt.hit = True
                return Resolution(slot=slot, value=cached, hit=True)

            count = await self._source.fetch_transactions_involving_program(slot, program_id)
            outcome = await self._store.put_program_count(slot, program_id, count)
            if outcome is InsertOutcome.ALREADY_PRESENT:
                stored = await self._store.get_program_count(slot, program_id)
                if stored is not None:
                    count = stored
            return Resolution(slot=slot, value=count, hit=False)

    async def _in_batches(
        self,
        items: Sequence[T],
        batch_size: int,
        worker: Callable[[T], Awaitable[Optional[R]]],
    ) -> List[R]:
        results: List[R] = []
        total = len(items)
        for offset in range(0, total, batch_size):
            batch = items[offset : offset + batch_size]
            outcomes = await asyncio.gather(*(worker(item) for item in batch))
            results.extend(outcome for outcome in outcomes if outcome is not None)
            log.debug(
                "Processed batch",
                extra={"processed": min(offset + batch_size, total), "total": total},
            )
        return results

    async def _block_or_none(self, slot: int) -> Optional[Resolution[BlockRecord]]:
        try:
            return await self.resolve_block(slot)
        except _PER_ITEM_ERRORS as exc:
            log.warning(
                "Skipping slot", extra={"slot": slot, "error": exc.message, "status": exc.status_code}
            )
            return None

    async def resolve_range(self, slots: Iterable[int]) -> List[Resolution[BlockRecord]]:
        """
        Resolve many slots in bounded concurrent batches.

        Slots that fail are logged and omitted; the rest are returned in
        ascending slot order regardless of completion order.
        """
        slot_list = [parse_slot(slot) for slot in slots]
        resolved = await self._in_batches(slot_list, self.batch_size, self._block_or_none)
        return sorted(resolved, key=lambda resolution: resolution.slot)

    async def _program_sample_or_none(self, slot: int, program_id: str) -> Optional[ProgramSample]:
        program, network = await asyncio.gather(
            self.resolve_program_count(slot, program_id),
            self.resolve_transaction_count(slot),
            return_exceptions=True,
        )
        for outcome in (program, network):
            if isinstance(outcome, _PER_ITEM_ERRORS):
                log.warning(
                    "Skipping slot",
                    extra={"slot": slot, "program_id": program_id, "error": outcome.message},
                )
                return None
            if isinstance(outcome, BaseException):
                raise outcome
        return ProgramSample(
            slot=slot,
            program_transactions=program.value,
            network_transactions=network.value,
            hit=program.hit,
        )

    async def resolve_program_range(
        self, slots: Iterable[int], program_id: str
    ) -> List[ProgramSample]:
        """
        Resolve program and network counts for many slots, in batches.

        A slot is kept only when both counts resolve. Output is sorted by slot.
        """
        program_id = parse_program_id(program_id)
        slot_list = [parse_slot(slot) for slot in slots]

        async def worker(slot: int) -> Optional[ProgramSample]:
            return await self._program_sample_or_none(slot, program_id)

        samples = await self._in_batches(slot_list, self.program_batch_size, worker)
        return sorted(samples, key=lambda sample: sample.slot)

    async def slots_for_heights(self, heights: Iterable[int]) -> Dict[int, Optional[int]]:
        """Look up each height in the store's height index."""
        height_list = [parse_slot(height, name="height") for height in heights]

        async def lookup(height: int) -> Tuple[int, Optional[int]]:
            return height, await self._store.slot_for_height(height)

        pairs = await self._in_batches(height_list, self.batch_size, lookup)
        return dict(pairs)


__all__ = ["CacheThroughResolver", "parse_program_id", "parse_slot"]
