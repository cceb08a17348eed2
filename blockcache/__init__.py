"""
Block cache - read-through cache and throughput analysis for Solana blocks.

This package resolves slots to block data through a durable PostgreSQL cache,
falling back to a Solana JSON-RPC endpoint on misses, and builds sampled
throughput analyses on top of it:

- Cache-through block, transaction-count and program-count resolution
- Deterministic stride sampling over slot and block-height ranges
- Before / during / after comparisons around an outage window
- Request-log based cache statistics
"""

from __future__ import annotations

__version__ = "0.1.0"

# Public API exports
from blockcache.config import Settings, get_settings
from blockcache.errors import (
    BlockCacheError,
    ConflictError,
    HeightIndexError,
    InvalidInputError,
    NotFoundError,
    RateLimitedError,
    StorageError,
    UpstreamError,
)
from blockcache.orchestrator import (
    AnalysisThresholds,
    calculate_change,
    classify_severity,
    compare_event,
    compare_program_event,
    run_comparison,
)
from blockcache.resolver import CacheThroughResolver
from blockcache.sampler import RangeSampler, stride_sample
from blockcache.stats import StatsReporter
from blockcache.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    # Configuration
    "Settings",
    "get_settings",
    # Errors
    "BlockCacheError",
    "ConflictError",
    "HeightIndexError",
    "InvalidInputError",
    "NotFoundError",
    "RateLimitedError",
    "StorageError",
    "UpstreamError",
    # Resolution and sampling
    "CacheThroughResolver",
    "RangeSampler",
    "stride_sample",
    "StatsReporter",
    # Comparative analysis
    "AnalysisThresholds",
    "calculate_change",
    "classify_severity",
    "compare_event",
    "compare_program_event",
    "run_comparison",
    # Logging
    "configure_logging",
    "get_logger",
]
