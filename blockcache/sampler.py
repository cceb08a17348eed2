"""
Deterministic stride sampling over slot ranges, plus aggregation.

A range ``[start, end)`` can span tens of thousands of slots, so only an
evenly spaced subset is resolved:

    total = end - start
    total <= sample_size  -> every slot in the range
    otherwise             -> start + i * (total // sample_size), i < sample_size

The same inputs always yield the same slots. Aggregates are best-effort:
slots that fail to resolve are left out and reported in `slots_failed`, and
empty aggregates report 0 rather than NaN.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from blockcache.config import Settings
from blockcache.domain.models import ProgramRangeAnalysis, RangeAnalysis
from blockcache.errors import HeightIndexError, InvalidInputError
from blockcache.resolver import CacheThroughResolver, parse_program_id, parse_slot
from blockcache.utils.logging import get_logger

log = get_logger(__name__)


def stride_sample(start: int, end: int, sample_size: int) -> List[int]:
    """
    Pick up to `sample_size` evenly spaced identifiers from ``[start, end)``.

    Raises
    ------
    InvalidInputError
        If `start` is negative, `end <= start` or `sample_size < 1`.
    """
    start = parse_slot(start, name="start")
    end = parse_slot(end, name="end")
    if isinstance(sample_size, bool) or not isinstance(sample_size, int) or sample_size < 1:
        raise InvalidInputError(f"Invalid sample size: {sample_size!r}. Must be at least 1.")
    if end <= start:
        raise InvalidInputError(f"Invalid range [{start}, {end}): end must be greater than start.")

    total = end - start
    if total <= sample_size:
        return list(range(start, end))
    stride = total // sample_size
    return [start + i * stride for i in range(sample_size)]


@dataclass(frozen=True)
class CountSummary:
    total: int
    average: float
    minimum: int
    maximum: int


def summarize_counts(counts: Sequence[int]) -> CountSummary:
    """Sum, mean, min and max of `counts`; all zero for an empty sequence."""
    if not counts:
        return CountSummary(total=0, average=0.0, minimum=0, maximum=0)
    total = sum(counts)
    return CountSummary(
        total=total,
        average=total / len(counts),
        minimum=min(counts),
        maximum=max(counts),
    )


def estimate_total(average: float, range_length: int) -> int:
    """Extrapolate a per-block average over a whole range (an estimate)."""
    return math.floor(average * range_length)


class RangeSampler:
    """
    Sample a range, resolve the sample through the cache and aggregate.

    Parameters
    ----------
    resolver : CacheThroughResolver
        Resolution path for every sampled slot.
    default_sample_size : int
        Sample size used by `analyze_range` when none is given.
    program_sample_size : int
        Sample size used by `analyze_program_range` when none is given.
    """

    def __init__(
        self,
        resolver: CacheThroughResolver,
        default_sample_size: int = 100,
        program_sample_size: int = 50,
    ) -> None:
        self.resolver = resolver
        self.default_sample_size = default_sample_size
        self.program_sample_size = program_sample_size

    @classmethod
    def from_settings(cls, resolver: CacheThroughResolver, settings: Settings) -> "RangeSampler":
        return cls(
            resolver,
            default_sample_size=settings.default_sample_size,
            program_sample_size=settings.program_sample_size,
        )

    async def analyze_range(
        self, start: int, end: int, sample_size: Optional[int] = None
    ) -> RangeAnalysis:
        """
        Transaction metrics for the slot range ``[start, end)``.
        """
        start = parse_slot(start, name="start")
        end = parse_slot(end, name="end")
        size = sample_size if sample_size is not None else self.default_sample_size
        slots = stride_sample(start, end, size)
        log.info(
            "Analyzing slot range",
            extra={"start_slot": start, "end_slot": end, "sampled": len(slots)},
        )
        resolutions = await self.resolver.resolve_range(slots)

        summary = summarize_counts([r.value.transaction_count for r in resolutions])
        hits = sum(1 for r in resolutions if r.hit)
        return RangeAnalysis(
            start_slot=start,
            end_slot=end,
            sample_size=size,
            slots_requested=len(slots),
            blocks_sampled=len(resolutions),
            slots_failed=len(slots) - len(resolutions),
            total_transactions=summary.total,
            average_transactions_per_block=summary.average,
            min_transactions=summary.minimum,
            max_transactions=summary.maximum,
            estimated_total_transactions=estimate_total(summary.average, end - start),
            cache_hits=hits,
            cache_misses=len(resolutions) - hits,
            sampled_slots=[r.slot for r in resolutions],
        )

    async def analyze_program_range(
        self,
        start: int,
        end: int,
        program_id: str,
        sample_size: Optional[int] = None,
    ) -> ProgramRangeAnalysis:
        """
        Program-filtered metrics for ``[start, end)``.

        Each sampled slot contributes its program transaction count and its
        network transaction count; `program_percentage` is the program's share
        of all sampled transactions.
        """
        start = parse_slot(start, name="start")
        end = parse_slot(end, name="end")
        program_id = parse_program_id(program_id)
        size = sample_size if sample_size is not None else self.program_sample_size
        slots = stride_sample(start, end, size)
        log.info(
            "Analyzing program over slot range",
            extra={
                "start_slot": start,
                "end_slot": end,
                "program_id": program_id,
                "sampled": len(slots),
            },
        )
        samples = await self.resolver.resolve_program_range(slots, program_id)

        program = summarize_counts([s.program_transactions for s in samples])
        network = summarize_counts([s.network_transactions for s in samples])
        hits = sum(1 for s in samples if s.hit)
        percentage = program.total / network.total * 100 if network.total > 0 else 0.0
        return ProgramRangeAnalysis(
            start_slot=start,
            end_slot=end,
            program_id=program_id,
            sample_size=size,
            slots_requested=len(slots),
            blocks_sampled=len(samples),
            slots_failed=len(slots) - len(samples),
            total_program_transactions=program.total,
            total_network_transactions=network.total,
            average_program_transactions_per_block=program.average,
            average_network_transactions_per_block=network.average,
            program_percentage=percentage,
            min_program_transactions=program.minimum,
            max_program_transactions=program.maximum,
            estimated_total_program_transactions=estimate_total(program.average, end - start),
            cache_hits=hits,
            cache_misses=len(samples) - hits,
            sampled_slots=[s.slot for s in samples],
        )

    async def analyze_height_range(
        self, start_height: int, end_height: int, sample_size: Optional[int] = None
    ) -> RangeAnalysis:
        """
        Transaction metrics for the block-height range ``[start_height, end_height)``.

        Heights are mapped to slots through the store's height index; heights
        are never treated as slots.

        Raises
        ------
        HeightIndexError
            If any sampled height has no known slot.
        """
        start_height = parse_slot(start_height, name="start height")
        end_height = parse_slot(end_height, name="end height")
        size = sample_size if sample_size is not None else self.default_sample_size
        heights = stride_sample(start_height, end_height, size)
        mapping = await self.resolver.slots_for_heights(heights)
        missing = [height for height in heights if mapping.get(height) is None]
        if missing:
            raise HeightIndexError(missing)

        resolutions = await self.resolver.resolve_range(mapping[h] for h in heights)
        summary = summarize_counts([r.value.transaction_count for r in resolutions])
        hits = sum(1 for r in resolutions if r.hit)
        return RangeAnalysis(
            start_slot=mapping[heights[0]],
            end_slot=mapping[heights[-1]] + 1,
            start_height=start_height,
            end_height=end_height,
            sample_size=size,
            slots_requested=len(heights),
            blocks_sampled=len(resolutions),
            slots_failed=len(heights) - len(resolutions),
            total_transactions=summary.total,
            average_transactions_per_block=summary.average,
            min_transactions=summary.minimum,
            max_transactions=summary.maximum,
            # heights count produced blocks, so extrapolate over heights
            estimated_total_transactions=estimate_total(summary.average, end_height - start_height),
            cache_hits=hits,
            cache_misses=len(resolutions) - hits,
            sampled_slots=[r.slot for r in resolutions],
        )


__all__ = [
    "CountSummary",
    "RangeSampler",
    "estimate_total",
    "stride_sample",
    "summarize_counts",
]
