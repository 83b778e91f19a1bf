"""Name and account helpers shared by the registry, resolver and plan builder."""

from __future__ import annotations

from typing import Optional

from ens import ENS
from eth_utils import is_address, to_checksum_address

from .errors import ConfigError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def namehash(name: str) -> bytes:
    """EIP-137 namehash of ``name`` (normalised)."""

    return bytes(ENS.namehash(name))


def token_id(name: str) -> int:
    """NameWrapper ERC-1155 token id of ``name``."""

    return int.from_bytes(namehash(name), "big")


def version_label(slot: int) -> str:
    if slot < 0:
        raise ValueError(f"version slot must be >= 0, got {slot}")
    return f"v{slot}"


def child_name(label: str, parent: str) -> str:
    return f"{label}.{parent}"


def is_zero_address(address: Optional[str]) -> bool:
    return not address or int(address, 16) == 0


def same_account(left: Optional[str], right: Optional[str]) -> bool:
    """Account identifiers compare case-insensitively (EIP-55 is only a checksum)."""

    if not left or not right:
        return False
    return left.lower() == right.lower()


def checksum(address: str, *, field: str = "address") -> str:
    if not isinstance(address, str) or not is_address(address):
        raise ConfigError(f"{field} is not a valid account address: {address!r}")
    return to_checksum_address(address)
