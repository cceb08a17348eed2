"""
Error taxonomy for the block cache.

Every error carries the status code recorded in the request log for the
failure class that produced it.
"""

from __future__ import annotations

from typing import Optional, Sequence


class BlockCacheError(Exception):
    """Base class for all block cache errors."""

    status_code: int = 500

    def __init__(self, message: str, slot: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.slot = slot


class InvalidInputError(BlockCacheError):
    """Malformed or out-of-domain slot, height or range."""

    status_code = 400


class NotFoundError(BlockCacheError):
    """No block exists upstream for the requested slot (e.g. a skipped slot)."""

    status_code = 404


class HeightIndexError(NotFoundError):
    """Requested block heights have no known slot in the height index."""

    def __init__(self, missing_heights: Sequence[int]) -> None:
        self.missing_heights = list(missing_heights)
        preview = ", ".join(str(h) for h in self.missing_heights[:5])
        if len(self.missing_heights) > 5:
            preview += ", ..."
        super().__init__(
            f"{len(self.missing_heights)} block height(s) not in the height index "
            f"({preview}); resolve them by slot first"
        )


class UpstreamError(BlockCacheError):
    """Transport or protocol failure talking to the block source."""

    status_code = 502


class RateLimitedError(UpstreamError):
    """The block source rejected the request because of rate limiting."""

    status_code = 429


class ConflictError(BlockCacheError):
    """Insert raced with another writer for the same key."""

    status_code = 409


class StorageError(BlockCacheError):
    """Persistent store failure."""

    status_code = 500


__all__ = [
    "BlockCacheError",
    "InvalidInputError",
    "NotFoundError",
    "HeightIndexError",
    "UpstreamError",
    "RateLimitedError",
    "ConflictError",
    "StorageError",
]
