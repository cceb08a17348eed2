"""
Solana JSON-RPC block source.

Talks to an upstream RPC endpoint over HTTP with httpx. Transport failures,
timeouts, non-2xx responses and malformed payloads surface as `UpstreamError`
(HTTP 429 as `RateLimitedError`); a null ``getBlock`` result or a
skipped-slot error object surfaces as `NotFoundError`. Nothing is retried
here; retry policy belongs to the caller.
"""

from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from blockcache.config import Settings
from blockcache.domain.models import BlockRecord
from blockcache.domain.transactions import (
    MalformedTransactionError,
    count_program_transactions,
    parse_transaction,
)
from blockcache.errors import NotFoundError, RateLimitedError, UpstreamError
from blockcache.utils.logging import get_logger

log = get_logger(__name__)

# Block not available, slot skipped, missing in long-term storage, status not yet available
SKIPPED_SLOT_ERROR_CODES = frozenset({-32004, -32007, -32009, -32014})


class SolanaRpcClient:
    """
    Minimal async client for the ``getBlock`` and ``getSlot`` RPC methods.

    Parameters
    ----------
    rpc_url : str
        JSON-RPC endpoint.
    timeout : float
        Per-request timeout in seconds.
    transport : httpx.AsyncBaseTransport, optional
        Custom transport (e.g. ``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )
        self._ids = itertools.count(1)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SolanaRpcClient":
        return cls(settings.rpc_url, timeout=settings.rpc_timeout_seconds)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "SolanaRpcClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _call(self, method: str, params: List[Any], slot: Optional[int] = None) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._client.post(self.rpc_url, json=body)
        except httpx.TimeoutException as exc:
            raise UpstreamError(f"{method} timed out", slot=slot) from exc
        except httpx.RequestError as exc:
            raise UpstreamError(f"{method} request failed: {exc}", slot=slot) from exc

        if response.status_code == 429:
            raise RateLimitedError(f"{method} rate limited by upstream", slot=slot)
        if response.is_error:
            raise UpstreamError(f"{method} HTTP error {response.status_code}", slot=slot)

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(f"{method} returned invalid JSON", slot=slot) from exc
        if not isinstance(payload, dict):
            raise UpstreamError(f"{method} returned an unexpected payload", slot=slot)

        error = payload.get("error")
        if error:
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            if code in SKIPPED_SLOT_ERROR_CODES:
                raise NotFoundError(f"No block at slot {slot}: {message}", slot=slot)
            raise UpstreamError(f"RPC error: {message}", slot=slot)
        return payload.get("result")

    async def _get_block(
        self,
        slot: int,
        encoding: str = "json",
        transaction_details: str = "full",
        rewards: bool = True,
    ) -> Dict[str, Any]:
        result = await self._call(
            "getBlock",
            [
                slot,
                {
                    "encoding": encoding,
                    "transactionDetails": transaction_details,
                    "maxSupportedTransactionVersion": 0,
                    "rewards": rewards,
                },
            ],
            slot=slot,
        )
        if result is None:
            raise NotFoundError(f"Block not found for slot {slot}", slot=slot)
        if not isinstance(result, dict):
            raise UpstreamError(f"getBlock returned an unexpected result for slot {slot}", slot=slot)
        return result

    async def fetch_block(self, slot: int) -> BlockRecord:
        result = await self._get_block(slot)
        try:
            return BlockRecord(
                slot=slot,
                height=result.get("blockHeight"),
                time=result.get("blockTime"),
                parent_slot=result["parentSlot"],
                transaction_count=len(result.get("transactions") or []),
                block_hash=result["blockhash"],
                previous_block_hash=result["previousBlockhash"],
                rewards=result.get("rewards"),
            )
        except (KeyError, ValidationError) as exc:
            raise UpstreamError(f"Malformed block payload for slot {slot}", slot=slot) from exc

    async def fetch_transaction_count_only(self, slot: int) -> int:
        # signatures-only blocks list one signature per transaction
        result = await self._get_block(slot, transaction_details="signatures", rewards=False)
        return len(result.get("signatures") or [])

    async def fetch_current_head(self) -> int:
        result = await self._call("getSlot", [])
        if not isinstance(result, int) or result < 0:
            raise UpstreamError(f"getSlot returned an unexpected result: {result!r}")
        return result

    async def fetch_transactions_involving_program(self, slot: int, program_id: str) -> int:
        result = await self._get_block(slot, encoding="jsonParsed", rewards=False)
        raw_transactions = result.get("transactions") or []
        if not isinstance(raw_transactions, list):
            raise UpstreamError(f"Malformed transactions for slot {slot}", slot=slot)
        try:
            transactions = [parse_transaction(tx) for tx in raw_transactions]
        except (MalformedTransactionError, ValidationError) as exc:
            raise UpstreamError(f"Malformed transaction payload for slot {slot}: {exc}", slot=slot) from exc
        count = count_program_transactions(transactions, program_id)
        log.debug(
            "Counted program transactions",
            extra={"slot": slot, "program_id": program_id, "count": count},
        )
        return count


__all__ = ["SKIPPED_SLOT_ERROR_CODES", "SolanaRpcClient"]
