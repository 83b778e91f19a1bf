"""ABI calldata encoders for the handful of contract calls the protocol sends."""

from __future__ import annotations

from typing import Iterable, Sequence

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from .names import ZERO_ADDRESS

SET_SUBNODE_RECORD = (
    "setSubnodeRecord(bytes32,string,address,address,uint64,uint32,uint64)"
)
SET_CONTENTHASH = "setContenthash(bytes32,bytes)"
SET_FUSES = "setFuses(bytes32,uint16)"
MULTI_SEND = "multiSend(bytes)"
EXEC_TRANSACTION = (
    "execTransaction(address,uint256,bytes,uint8,uint256,uint256,uint256,address,address,bytes)"
)

CALL = 0
DELEGATE_CALL = 1


def _call(signature: str, types: Sequence[str], args: Sequence[object]) -> bytes:
    return function_signature_to_4byte_selector(signature) + encode(list(types), list(args))


def set_subnode_record(
    parent_node: bytes,
    label: str,
    owner: str,
    resolver: str,
    ttl: int,
    fuses: int,
    expiry: int,
) -> bytes:
    return _call(
        SET_SUBNODE_RECORD,
        ["bytes32", "string", "address", "address", "uint64", "uint32", "uint64"],
        [
            parent_node,
            label,
            to_checksum_address(owner),
            to_checksum_address(resolver),
            ttl,
            fuses,
            expiry,
        ],
    )


def set_contenthash(node: bytes, pointer: bytes) -> bytes:
    return _call(SET_CONTENTHASH, ["bytes32", "bytes"], [node, pointer])


def set_fuses(node: bytes, fuses: int) -> bytes:
    return _call(SET_FUSES, ["bytes32", "uint16"], [node, fuses])


def pack_multisend(operations: Iterable[tuple[str, int, bytes]]) -> bytes:
    """Pack ``(to, value, data)`` triples in the MultiSend wire format.

    Each entry is ``uint8 operation ++ address to ++ uint256 value ++
    uint256 len(data) ++ data`` with no padding between entries.
    """

    packed = bytearray()
    for to, value, data in operations:
        packed += CALL.to_bytes(1, "big")
        packed += bytes.fromhex(to_checksum_address(to)[2:])
        packed += int(value).to_bytes(32, "big")
        packed += len(data).to_bytes(32, "big")
        packed += data
    return bytes(packed)


def multi_send(operations: Iterable[tuple[str, int, bytes]]) -> bytes:
    return _call(MULTI_SEND, ["bytes"], [pack_multisend(operations)])


def exec_transaction(
    to: str,
    value: int,
    data: bytes,
    operation: int,
    signatures: bytes,
    *,
    safe_tx_gas: int = 0,
    base_gas: int = 0,
    gas_price: int = 0,
    gas_token: str = ZERO_ADDRESS,
    refund_receiver: str = ZERO_ADDRESS,
) -> bytes:
    return _call(
        EXEC_TRANSACTION,
        [
            "address",
            "uint256",
            "bytes",
            "uint8",
            "uint256",
            "uint256",
            "uint256",
            "address",
            "address",
            "bytes",
        ],
        [
            to_checksum_address(to),
            value,
            data,
            operation,
            safe_tx_gas,
            base_gas,
            gas_price,
            to_checksum_address(gas_token),
            to_checksum_address(refund_receiver),
            signatures,
        ],
    )
