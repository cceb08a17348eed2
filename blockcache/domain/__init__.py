"""
Domain package for the block cache.

Exports the cached record shapes, aggregate results and the typed view of
transaction program references. Keep this package free of I/O.
"""

from blockcache.domain.models import (
    ApiRequestLog,
    BlockRecord,
    CacheStatistics,
    InsertOutcome,
    ProgramRangeAnalysis,
    ProgramSample,
    ProgramTransactionCount,
    RangeAnalysis,
    Resolution,
    WindowedStats,
)
from blockcache.domain.transactions import (
    TransactionReferences,
    count_program_transactions,
    parse_transaction,
    touches_program,
)

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
    "TransactionReferences",
    "WindowedStats",
    "count_program_transactions",
    "parse_transaction",
    "touches_program",
]
