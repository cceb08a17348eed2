"""
Cache statistics over a trailing time window of the request log.
"""

from __future__ import annotations

from typing import List, Optional

from blockcache.abstract import BlockStore
from blockcache.domain.models import BlockRecord, CacheStatistics, ProgramTransactionCount
from blockcache.errors import InvalidInputError
from blockcache.resolver import parse_program_id, parse_slot
from blockcache.utils.logging import get_logger

log = get_logger(__name__)


class StatsReporter:
    """Read-only reporting over the store."""

    def __init__(self, store: BlockStore) -> None:
        self._store = store

    async def cache_statistics(self, window_seconds: int = 3600) -> CacheStatistics:
        """
        Summarize request-log entries created within the last `window_seconds`.

        The hit rate is 0 when the window holds no requests. The cached-record
        count covers the whole cache, not just the window.
        """
        if isinstance(window_seconds, bool) or not isinstance(window_seconds, int) or window_seconds <= 0:
            raise InvalidInputError(f"Invalid window: {window_seconds!r}. Must be a positive number of seconds.")

        windowed = await self._store.windowed_stats(window_seconds)
        cached_records = await self._store.total_block_count()
        hit_rate = (
            windowed.cache_hits / windowed.total_requests * 100 if windowed.total_requests > 0 else 0.0
        )
        stats = CacheStatistics(
            window_seconds=window_seconds,
            total_cached_records=cached_records,
            total_requests=windowed.total_requests,
            cache_hits=windowed.cache_hits,
            cache_misses=windowed.total_requests - windowed.cache_hits,
            cache_hit_rate_percent=round(hit_rate, 2),
            avg_response_time_ms=round(windowed.avg_response_time_ms),
        )
        log.debug("Cache statistics computed", extra=stats.model_dump())
        return stats

    async def recent_blocks(self, limit: int = 10) -> List[BlockRecord]:
        """Most recently cached blocks, newest slot first."""
        return await self._store.list_recent(limit)

    async def block_at_height(self, height: int) -> Optional[BlockRecord]:
        """Cached block at block height `height`, if the height index knows it."""
        return await self._store.get_block_by_height(parse_slot(height, name="height"))

    async def cached_program_counts(
        self, start_slot: int, end_slot: int, program_id: str
    ) -> List[ProgramTransactionCount]:
        """Program counts already cached for ``[start_slot, end_slot)``, in slot order."""
        start_slot = parse_slot(start_slot, name="start")
        end_slot = parse_slot(end_slot, name="end")
        if end_slot <= start_slot:
            raise InvalidInputError(
                f"Invalid range [{start_slot}, {end_slot}): end must be greater than start."
            )
        return await self._store.list_program_counts(start_slot, end_slot, parse_program_id(program_id))


__all__ = ["StatsReporter"]
