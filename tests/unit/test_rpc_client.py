from __future__ import annotations

import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from blockcache.errors import NotFoundError, RateLimitedError, UpstreamError
from blockcache.infrastructure.rpc_client import SolanaRpcClient
from blockcache.resolver import CacheThroughResolver
from blockcache.sampler import RangeSampler
from tests.fakes import InMemoryBlockStore

RPC_URL = "https://rpc.test"
SLOT = 374_563_500
PROGRAM_ID = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"

BLOCK_RESULT = {
    "blockHeight": 352_000_000,
    "blockTime": 1_760_941_800,
    "blockhash": "HashB",
    "previousBlockhash": "HashA",
    "parentSlot": SLOT - 1,
    "rewards": [{"pubkey": "validator", "lamports": 5000}],
    "transactions": [{"transaction": {}, "meta": {}} for _ in range(3)],
}


def _client(handler: Callable[[Dict[str, Any]], httpx.Response], seen: List[Dict[str, Any]]) -> SolanaRpcClient:
    def transport_handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body)
        return handler(body)

    return SolanaRpcClient(RPC_URL, transport=httpx.MockTransport(transport_handler))


def _result(result: Any) -> Callable[[Dict[str, Any]], httpx.Response]:
    return lambda body: httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def _error(code: int, message: str) -> Callable[[Dict[str, Any]], httpx.Response]:
    return lambda body: httpx.Response(
        200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": code, "message": message}}
    )


@pytest.mark.asyncio
async def test_fetch_block_maps_rpc_fields() -> None:
    seen: List[Dict[str, Any]] = []
    async with _client(_result(BLOCK_RESULT), seen) as client:
        record = await client.fetch_block(SLOT)

    assert record.slot == SLOT
    assert record.height == 352_000_000
    assert record.time == 1_760_941_800
    assert record.parent_slot == SLOT - 1
    assert record.transaction_count == 3
    assert record.block_hash == "HashB"
    assert record.previous_block_hash == "HashA"
    assert record.rewards == BLOCK_RESULT["rewards"]
    assert seen[0]["method"] == "getBlock"
    assert seen[0]["params"][0] == SLOT
    assert seen[0]["params"][1]["maxSupportedTransactionVersion"] == 0


@pytest.mark.asyncio
async def test_null_block_result_is_not_found() -> None:
    async with _client(_result(None), []) as client:
        with pytest.raises(NotFoundError) as exc_info:
            await client.fetch_block(SLOT)

    assert exc_info.value.slot == SLOT


@pytest.mark.asyncio
@pytest.mark.parametrize("code", [-32004, -32007, -32009, -32014])
async def test_skipped_slot_error_codes_are_not_found(code: int) -> None:
    async with _client(_error(code, "Slot was skipped"), []) as client:
        with pytest.raises(NotFoundError):
            await client.fetch_block(SLOT)


@pytest.mark.asyncio
async def test_other_rpc_errors_are_upstream_failures() -> None:
    async with _client(_error(-32603, "Internal error"), []) as client:
        with pytest.raises(UpstreamError) as exc_info:
            await client.fetch_block(SLOT)

    assert not isinstance(exc_info.value, NotFoundError)
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_http_429_is_rate_limited() -> None:
    async with _client(lambda body: httpx.Response(429, text="Too Many Requests"), []) as client:
        with pytest.raises(RateLimitedError) as exc_info:
            await client.fetch_block(SLOT)

    assert exc_info.value.status_code == 429


@pytest.mark.asyncio
async def test_http_server_error_and_bad_json_are_upstream_failures() -> None:
    async with _client(lambda body: httpx.Response(503), []) as client:
        with pytest.raises(UpstreamError):
            await client.fetch_block(SLOT)
    async with _client(lambda body: httpx.Response(200, text="<html>"), []) as client:
        with pytest.raises(UpstreamError):
            await client.fetch_current_head()


@pytest.mark.asyncio
async def test_timeouts_are_upstream_failures() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    async with SolanaRpcClient(RPC_URL, transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(UpstreamError):
            await client.fetch_block(SLOT)


@pytest.mark.asyncio
async def test_malformed_block_payload_is_upstream_failure() -> None:
    async with _client(_result({"blockhash": "HashB"}), []) as client:
        with pytest.raises(UpstreamError):
            await client.fetch_block(SLOT)


@pytest.mark.asyncio
async def test_count_only_fetch_counts_signatures() -> None:
    seen: List[Dict[str, Any]] = []
    async with _client(_result({"signatures": ["a", "b", "c", "d"], "blockhash": "HashB"}), seen) as client:
        count = await client.fetch_transaction_count_only(SLOT)

    assert count == 4
    assert seen[0]["params"][1]["transactionDetails"] == "signatures"
    assert seen[0]["params"][1]["rewards"] is False


@pytest.mark.asyncio
async def test_fetch_current_head_reads_get_slot() -> None:
    seen: List[Dict[str, Any]] = []
    async with _client(_result(SLOT), seen) as client:
        head = await client.fetch_current_head()

    assert head == SLOT
    assert seen[0]["method"] == "getSlot"


@pytest.mark.asyncio
async def test_program_count_uses_parsed_transactions() -> None:
    transactions = [
        {
            "transaction": {
                "signatures": ["a"],
                "message": {"accountKeys": [{"pubkey": PROGRAM_ID}], "instructions": [{"programId": PROGRAM_ID}]},
            },
            "meta": {},
        },
        {
            "transaction": {
                "signatures": ["b"],
                "message": {"accountKeys": [{"pubkey": "other"}], "instructions": [{"programId": "other"}]},
            },
            "meta": {"innerInstructions": [{"index": 0, "instructions": [{"programId": PROGRAM_ID}]}]},
        },
        {
            "transaction": {
                "signatures": ["c"],
                "message": {"accountKeys": [{"pubkey": "other"}], "instructions": [{"programId": "other"}]},
            },
            "meta": {},
        },
    ]
    seen: List[Dict[str, Any]] = []
    async with _client(_result({**BLOCK_RESULT, "transactions": transactions}), seen) as client:
        count = await client.fetch_transactions_involving_program(SLOT, PROGRAM_ID)

    assert count == 2
    assert seen[0]["params"][1]["encoding"] == "jsonParsed"


@pytest.mark.asyncio
async def test_request_ids_increase() -> None:
    seen: List[Dict[str, Any]] = []
    async with _client(_result(SLOT), seen) as client:
        await client.fetch_current_head()
        await client.fetch_current_head()

    assert [body["id"] for body in seen] == [1, 2]


def _program_tx(program_id: str, inner: Any = None) -> Dict[str, Any]:
    return {
        "transaction": {
            "signatures": ["sig"],
            "message": {"accountKeys": [{"pubkey": program_id}], "instructions": [{"programId": program_id}]},
        },
        "meta": {"innerInstructions": inner if inner is not None else []},
    }


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "transactions",
    [
        [_program_tx(PROGRAM_ID, inner=["garbage"])],
        [_program_tx(PROGRAM_ID, inner=[{"index": 0, "instructions": "garbage"}])],
        [{"transaction": {"message": {"instructions": ["garbage"]}}, "meta": {}}],
        [{"transaction": {"message": "garbage"}, "meta": {}}],
        "garbage",
    ],
)
async def test_malformed_transaction_payload_is_upstream_failure(transactions: Any) -> None:
    async with _client(_result({**BLOCK_RESULT, "transactions": transactions}), []) as client:
        with pytest.raises(UpstreamError) as exc_info:
            await client.fetch_transactions_involving_program(SLOT, PROGRAM_ID)

    assert exc_info.value.slot == SLOT
    assert not isinstance(exc_info.value, NotFoundError)


@pytest.mark.asyncio
async def test_program_range_omits_slot_with_malformed_transactions() -> None:
    program_id = "Prog1111"

    def handler(body: Dict[str, Any]) -> httpx.Response:
        slot, options = body["params"]
        if options["transactionDetails"] == "signatures":
            result: Dict[str, Any] = {"signatures": ["a", "b"], "blockhash": f"Hash{slot}"}
        else:
            inner = ["garbage"] if slot == 1 else []
            result = {**BLOCK_RESULT, "transactions": [_program_tx(program_id, inner=inner)]}
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    store = InMemoryBlockStore()
    async with _client(handler, []) as client:
        sampler = RangeSampler(CacheThroughResolver(store, client))
        analysis = await sampler.analyze_program_range(0, 3, program_id, 3)

    assert analysis.slots_requested == 3
    assert analysis.blocks_sampled == 2
    assert analysis.slots_failed == 1
    assert analysis.sampled_slots == [0, 2]
    assert analysis.total_program_transactions == 2
    assert analysis.total_network_transactions == 4
    assert 1 not in {slot for slot, _ in store.program_counts}
