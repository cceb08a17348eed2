"""
Wiring for one application run.

`open_context` opens the block store and the RPC client, builds the resolver,
sampler and stats reporter on top of them, and closes both resources on exit.
There is no process-wide instance; each entry point owns its context.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from blockcache.abstract import BlockSource, BlockStore
from blockcache.config import Settings, get_settings
from blockcache.infrastructure.rpc_client import SolanaRpcClient
from blockcache.infrastructure.store import PostgresBlockStore
from blockcache.resolver import CacheThroughResolver
from blockcache.sampler import RangeSampler
from blockcache.stats import StatsReporter


@dataclass
class AppContext:
    settings: Settings
    store: BlockStore
    source: BlockSource
    resolver: CacheThroughResolver
    sampler: RangeSampler
    stats: StatsReporter

    @classmethod
    def build(cls, settings: Settings, store: BlockStore, source: BlockSource) -> "AppContext":
        resolver = CacheThroughResolver.from_settings(store, source, settings)
        return cls(
            settings=settings,
            store=store,
            source=source,
            resolver=resolver,
            sampler=RangeSampler.from_settings(resolver, settings),
            stats=StatsReporter(store),
        )


@asynccontextmanager
async def open_context(settings: Optional[Settings] = None) -> AsyncIterator[AppContext]:
    settings = settings or get_settings()
    async with PostgresBlockStore.from_settings(settings) as store:
        async with SolanaRpcClient.from_settings(settings) as source:
            yield AppContext.build(settings, store, source)


__all__ = ["AppContext", "open_context"]
