"""
Domain models for the block cache.

Defines the cached record shapes aligned with `infrastructure/schema.py`, the
request-log entry, and the aggregate results produced by the range sampler and
the stats reporter.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")

_FROZEN = {"frozen": True, "populate_by_name": True}


class BlockRecord(BaseModel):
    """
    One cached block, keyed by slot.

    `created_at`/`updated_at` are assigned once when the record is first
    written to the cache and never change afterwards.
    """

    slot: int = Field(..., ge=0, description="Slot the block was produced in.")
    height: Optional[int] = Field(None, description="Block height, when the chain reports one.")
    time: Optional[int] = Field(None, description="Estimated production time, epoch seconds.")
    parent_slot: int = Field(..., ge=0)
    transaction_count: int = Field(..., ge=0)
    block_hash: str
    previous_block_hash: str
    rewards: Optional[List[Dict[str, Any]]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = _FROZEN

    def stamped(self, now: datetime) -> "BlockRecord":
        """Return a copy carrying insert timestamps."""
        return self.model_copy(update={"created_at": now, "updated_at": now})


class ProgramTransactionCount(BaseModel):
    slot: int = Field(..., ge=0)
    program_id: str
    count: int = Field(..., ge=0)
    created_at: Optional[datetime] = None

    model_config = _FROZEN


class ApiRequestLog(BaseModel):
    """Append-only audit record of one resolution attempt."""

    endpoint: str
    method: str = "GET"
    slot: Optional[int] = None
    cache_hit: bool = False
    response_time_ms: int = Field(0, ge=0)
    status_code: int = 200
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = _FROZEN


class InsertOutcome(str, enum.Enum):
    """Result of a cache write that tolerates an existing row."""

    INSERTED = "inserted"
    ALREADY_PRESENT = "already_present"


@dataclass(frozen=True)
class Resolution(Generic[T]):
    """A resolved value plus whether it came from the cache."""

    slot: int
    value: T
    hit: bool


@dataclass(frozen=True)
class ProgramSample:
    """Per-slot program and network transaction counts."""

    slot: int
    program_transactions: int
    network_transactions: int
    hit: bool


class WindowedStats(BaseModel):
    total_requests: int = 0
    cache_hits: int = 0
    avg_response_time_ms: float = 0.0

    model_config = _FROZEN


class CacheStatistics(BaseModel):
    window_seconds: int
    total_cached_records: int
    total_requests: int
    cache_hits: int
    cache_misses: int
    cache_hit_rate_percent: float
    avg_response_time_ms: int

    model_config = _FROZEN


class RangeAnalysis(BaseModel):
    """
    Aggregate transaction metrics over a stride-sampled slot range.

    `estimated_total_transactions` extrapolates the sampled average over the
    whole range; it is an estimate, not an exact count.
    """

    start_slot: int
    end_slot: int
    start_height: Optional[int] = None
    end_height: Optional[int] = None
    sample_size: int
    slots_requested: int
    blocks_sampled: int
    slots_failed: int
    total_transactions: int
    average_transactions_per_block: float
    min_transactions: int
    max_transactions: int
    estimated_total_transactions: int
    cache_hits: int
    cache_misses: int
    sampled_slots: List[int] = Field(default_factory=list)

    model_config = _FROZEN


class ProgramRangeAnalysis(BaseModel):
    """
    Program-filtered aggregate over a stride-sampled slot range.

    Cache hits and misses count the program-count resolutions.
    """

    start_slot: int
    end_slot: int
    program_id: str
    sample_size: int
    slots_requested: int
    blocks_sampled: int
    slots_failed: int
    total_program_transactions: int
    total_network_transactions: int
    average_program_transactions_per_block: float
    average_network_transactions_per_block: float
    program_percentage: float
    min_program_transactions: int
    max_program_transactions: int
    estimated_total_program_transactions: int
    cache_hits: int
    cache_misses: int
    sampled_slots: List[int] = Field(default_factory=list)

    model_config = _FROZEN


__all__ = [
    "ApiRequestLog",
    "BlockRecord",
    "CacheStatistics",
    "InsertOutcome",
    "ProgramRangeAnalysis",
    "ProgramSample",
    "ProgramTransactionCount",
    "RangeAnalysis",
    "Resolution",
    "WindowedStats",
]
