from __future__ import annotations

import pytest

from blockcache.domain.transactions import (
    AccountReference,
    InnerInstruction,
    MalformedTransactionError,
    TopLevelInstruction,
    TransactionReferences,
    count_program_transactions,
    parse_transaction,
    touches_program,
)

PROGRAM_ID = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"
TOKEN_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
SYSTEM_PROGRAM = "11111111111111111111111111111111"


def _parsed_tx(account_keys, instructions, inner=None, signature="sig"):
    return {
        "transaction": {
            "signatures": [signature],
            "message": {
                "accountKeys": [{"pubkey": key, "signer": False, "writable": False} for key in account_keys],
                "instructions": instructions,
            },
        },
        "meta": {"err": None, "innerInstructions": inner or []},
    }


def test_top_level_instruction_counts_once() -> None:
    raw = _parsed_tx(
        ["payer", PROGRAM_ID],
        [{"programId": PROGRAM_ID, "accounts": [], "data": ""}],
    )

    parsed = parse_transaction(raw)

    assert parsed.signature == "sig"
    assert touches_program(parsed, PROGRAM_ID)
    kinds = {type(ref) for ref in parsed.references if ref.program_id == PROGRAM_ID}
    assert kinds == {AccountReference, TopLevelInstruction}
    assert count_program_transactions([parsed], PROGRAM_ID) == 1


def test_inner_instruction_only_reference_is_detected() -> None:
    raw = _parsed_tx(
        ["payer", "router"],
        [{"programId": "router", "accounts": [], "data": ""}],
        inner=[{"index": 0, "instructions": [{"programId": PROGRAM_ID, "accounts": [], "data": ""}]}],
    )

    parsed = parse_transaction(raw)

    assert [ref for ref in parsed.references if isinstance(ref, InnerInstruction)] == [
        InnerInstruction(program_id=PROGRAM_ID, parent_index=0)
    ]
    assert touches_program(parsed, PROGRAM_ID)


def test_count_program_transactions_ignores_unrelated_transactions() -> None:
    transactions = [
        parse_transaction(
            _parsed_tx([PROGRAM_ID], [{"programId": PROGRAM_ID}], signature="a")
        ),
        parse_transaction(
            _parsed_tx(
                ["router"],
                [{"programId": "router"}],
                inner=[{"index": 0, "instructions": [{"programId": PROGRAM_ID}, {"programId": PROGRAM_ID}]}],
                signature="b",
            )
        ),
        parse_transaction(_parsed_tx([SYSTEM_PROGRAM], [{"programId": SYSTEM_PROGRAM}], signature="c")),
    ]

    assert count_program_transactions(transactions, PROGRAM_ID) == 2
    assert count_program_transactions(transactions, TOKEN_PROGRAM) == 0


def test_json_encoding_resolves_program_id_index_through_loaded_addresses() -> None:
    raw = {
        "transaction": {
            "signatures": ["sig"],
            "message": {
                "accountKeys": ["payer", SYSTEM_PROGRAM],
                "instructions": [{"programIdIndex": 2, "accounts": [0], "data": ""}],
            },
        },
        "meta": {"loadedAddresses": {"writable": [], "readonly": [PROGRAM_ID]}},
    }

    parsed = parse_transaction(raw)

    assert TopLevelInstruction(program_id=PROGRAM_ID, index=0) in parsed.references
    assert touches_program(parsed, PROGRAM_ID)


def test_out_of_range_program_index_is_ignored() -> None:
    raw = {
        "transaction": {
            "message": {"accountKeys": ["payer"], "instructions": [{"programIdIndex": 9}]},
        },
        "meta": {},
    }

    parsed = parse_transaction(raw)

    assert parsed.references == (AccountReference(program_id="payer"),)


def test_unparseable_entries_have_no_references() -> None:
    assert parse_transaction({"transaction": ["base64data", "base64"]}).references == ()
    assert parse_transaction("signature-only").references == ()


@pytest.mark.parametrize(
    "raw",
    [
        _parsed_tx([PROGRAM_ID], [{"programId": PROGRAM_ID}], inner=["garbage"]),
        _parsed_tx([PROGRAM_ID], ["garbage"]),
        {"transaction": {"message": {"accountKeys": "garbage"}}, "meta": {}},
        {"transaction": {"message": {}}, "meta": ["garbage"]},
    ],
)
def test_malformed_parsed_payloads_raise(raw) -> None:
    with pytest.raises(MalformedTransactionError):
        parse_transaction(raw)


def test_references_validate_from_tagged_payloads() -> None:
    parsed = TransactionReferences.model_validate(
        {
            "signature": "sig",
            "references": [
                {"kind": "account", "program_id": PROGRAM_ID},
                {"kind": "inner_instruction", "program_id": PROGRAM_ID, "parent_index": 1},
            ],
        }
    )

    assert isinstance(parsed.references[0], AccountReference)
    assert isinstance(parsed.references[1], InnerInstruction)
