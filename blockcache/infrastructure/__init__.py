"""
Infrastructure package for the block cache.

Centralizes I/O concerns: the PostgreSQL store and its connection factory, and
the upstream JSON-RPC client. Keep this layer decoupled from resolver and
sampler logic.
"""

from blockcache.infrastructure.db_factory import build_dsn, create_async_pool
from blockcache.infrastructure.rpc_client import SolanaRpcClient
from blockcache.infrastructure.store import PostgresBlockStore

__all__ = [
    "PostgresBlockStore",
    "SolanaRpcClient",
    "build_dsn",
    "create_async_pool",
]
