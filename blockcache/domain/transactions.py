"""
Typed view of the program references carried by an upstream transaction.

The RPC payload for a transaction is loosely shaped: account keys may be plain
strings (``json`` encoding) or objects with a ``pubkey`` (``jsonParsed``), and
instructions name their program either by ``programId`` or by an index into the
account keys. `parse_transaction` normalizes all of that into a tuple of
tagged references so that "does this transaction touch program X" is a pure
function over a typed structure.
"""
from __future__ import annotations

from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field


class AccountReference(BaseModel):
    """The program address appears in the transaction's account list."""

    kind: Literal["account"] = "account"
    program_id: str

    model_config = {"frozen": True}


class TopLevelInstruction(BaseModel):
    """A top-level instruction of the transaction message invokes the program."""

    kind: Literal["instruction"] = "instruction"
    program_id: str
    index: int

    model_config = {"frozen": True}


class InnerInstruction(BaseModel):
    """An instruction triggered during execution (CPI) invokes the program."""

    kind: Literal["inner_instruction"] = "inner_instruction"
    program_id: str
    parent_index: int

    model_config = {"frozen": True}


ProgramReference = Annotated[
    Union[AccountReference, TopLevelInstruction, InnerInstruction],
    Field(discriminator="kind"),
]


class TransactionReferences(BaseModel):
    signature: Optional[str] = None
    references: Tuple[ProgramReference, ...] = ()

    model_config = {"frozen": True}


class MalformedTransactionError(ValueError):
    """A transaction entry does not have the shape the RPC contract promises."""


def _mapping(value: Any, field: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedTransactionError(f"Expected an object for {field}, got {type(value).__name__}")
    return value


def _items(value: Any, field: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedTransactionError(f"Expected a list for {field}, got {type(value).__name__}")
    return value


def _account_keys(message: Dict[str, Any], meta: Dict[str, Any]) -> List[str]:
    """
    Flatten static and lookup-table account keys, in index order.
    """
    raw_keys = _items(message.get("accountKeys"), "message.accountKeys")
    keys: List[str] = []
    for key in raw_keys:
        pubkey = key if isinstance(key, str) else _mapping(key, "account key").get("pubkey")
        if pubkey:
            keys.append(pubkey)
    # jsonParsed already folds loaded addresses into accountKeys
    if any(isinstance(key, dict) for key in raw_keys):
        return keys
    loaded = _mapping(meta.get("loadedAddresses"), "meta.loadedAddresses")
    keys.extend(_items(loaded.get("writable"), "loadedAddresses.writable"))
    keys.extend(_items(loaded.get("readonly"), "loadedAddresses.readonly"))
    return keys


def _instruction_program(instruction: Any, keys: Sequence[str]) -> Optional[str]:
    instruction = _mapping(instruction, "instruction")
    program_id = instruction.get("programId")
    if program_id:
        return program_id
    index = instruction.get("programIdIndex")
    if isinstance(index, int) and 0 <= index < len(keys):
        return keys[index]
    return None


def parse_transaction(raw: Dict[str, Any]) -> TransactionReferences:
    """
    Normalize one entry of a ``getBlock`` ``transactions`` array.

    Raises
    ------
    MalformedTransactionError
        If the message, meta, instructions or inner-instruction groups are not
        shaped as objects and lists.
    """
    if not isinstance(raw, dict):
        return TransactionReferences()
    transaction = raw.get("transaction") or {}
    if not isinstance(transaction, dict):
        # signatures-only or base64 payloads carry no references
        return TransactionReferences()
    meta = _mapping(raw.get("meta"), "meta")
    message = _mapping(transaction.get("message"), "transaction.message")

    keys = _account_keys(message, meta)
    references: List[Union[AccountReference, TopLevelInstruction, InnerInstruction]] = [
        AccountReference(program_id=key) for key in keys
    ]

    for index, instruction in enumerate(_items(message.get("instructions"), "message.instructions")):
        program_id = _instruction_program(instruction, keys)
        if program_id:
            references.append(TopLevelInstruction(program_id=program_id, index=index))

    for group in _items(meta.get("innerInstructions"), "meta.innerInstructions"):
        group = _mapping(group, "inner instruction group")
        parent_index = group.get("index", -1)
        for instruction in _items(group.get("instructions"), "inner instructions"):
            program_id = _instruction_program(instruction, keys)
            if program_id:
                references.append(
                    InnerInstruction(program_id=program_id, parent_index=parent_index)
                )

    signatures = _items(transaction.get("signatures"), "transaction.signatures")
    return TransactionReferences(
        signature=signatures[0] if signatures else None,
        references=tuple(references),
    )


def touches_program(transaction: TransactionReferences, program_id: str) -> bool:
    """True if any reference of the transaction names `program_id`."""
    return any(ref.program_id == program_id for ref in transaction.references)


def count_program_transactions(
    transactions: Iterable[TransactionReferences], program_id: str
) -> int:
    """Count transactions touching `program_id`; each transaction counts once."""
    return sum(1 for tx in transactions if touches_program(tx, program_id))


__all__ = [
    "AccountReference",
    "InnerInstruction",
    "MalformedTransactionError",
    "ProgramReference",
    "TopLevelInstruction",
    "TransactionReferences",
    "count_program_transactions",
    "parse_transaction",
    "touches_program",
]
