"""Naming registry access.

:class:`NameRegistry` is the seam the protocol consumes; the resolver,
ownership detector and driver only ever talk to it.  The web3 implementation
reads and writes through the ENS NameWrapper, the ENS registry (to find a
node's resolver) and the resolver that stores the contenthash.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from eth_account.signers.local import LocalAccount
from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception

from . import calls
from .chain import TransactionReverted, send_transaction
from .config import NetworkProfile
from .errors import (
    AuthorizationError,
    RegistryReadError,
    RegistryWriteError,
    VersionSlotConflict,
    WriteUnconfirmed,
)
from .fuses import check_burn, check_owner_controlled
from .names import ZERO_ADDRESS, child_name, is_zero_address, namehash, token_id

LOG = logging.getLogger(__name__)

# Errors web3 surfaces for RPC/transport failures across releases.
_TRANSPORT_ERRORS = (Web3Exception, RequestException, ValueError, OSError)

NAME_WRAPPER_ABI = [
    {
        "name": "ownerOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "id", "type": "uint256"}],
        "outputs": [{"name": "owner", "type": "address"}],
    },
    {
        "name": "getData",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "id", "type": "uint256"}],
        "outputs": [
            {"name": "owner", "type": "address"},
            {"name": "fuses", "type": "uint32"},
            {"name": "expiry", "type": "uint64"},
        ],
    },
]

ENS_REGISTRY_ABI = [
    {
        "name": "resolver",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "node", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "address"}],
    },
]

RESOLVER_ABI = [
    {
        "name": "contenthash",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "node", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "bytes"}],
    },
]


@dataclass(frozen=True)
class NodeData:
    """Wrapped-name record as reported by the registry."""

    name: str
    owner: str
    fuses: int
    expiry: int

    @property
    def exists(self) -> bool:
        return not is_zero_address(self.owner)


class NameRegistry(ABC):
    """Read/write interface to the hierarchical naming registry."""

    @abstractmethod
    def owner_of(self, name: str) -> str:
        """Return the owner of ``name`` (the zero address when unassigned)."""

    @abstractmethod
    def get_data(self, name: str) -> NodeData:
        """Return owner, burned fuses and expiry of ``name``."""

    @abstractmethod
    def content_pointer(self, name: str) -> bytes:
        """Return the raw contenthash stored for ``name`` (``b""`` if unset)."""

    @abstractmethod
    def create_child(
        self,
        parent: str,
        label: str,
        owner: str,
        resolver: str,
        ttl: int,
        fuses: int,
        expiry: int,
    ) -> str:
        """Create ``label.parent``; raise :class:`VersionSlotConflict` if it exists."""

    @abstractmethod
    def set_content_pointer(self, name: str, pointer: bytes) -> str:
        """Store ``pointer`` as the contenthash of ``name``."""

    @abstractmethod
    def set_fuses(self, name: str, mask: int) -> str:
        """Burn the owner-controlled fuses in ``mask`` on ``name``."""


class NameWrapperRegistry(NameRegistry):
    """web3-backed registry for ENS NameWrapper names."""

    def __init__(
        self,
        web3: Web3,
        network: NetworkProfile,
        *,
        account: Optional[LocalAccount] = None,
        receipt_timeout: float = 300.0,
    ) -> None:
        self._web3 = web3
        self._network = network
        self._account = account
        self._receipt_timeout = receipt_timeout
        self._wrapper = web3.eth.contract(
            address=Web3.to_checksum_address(network.name_wrapper), abi=NAME_WRAPPER_ABI
        )
        self._ens = web3.eth.contract(
            address=Web3.to_checksum_address(network.ens_registry), abi=ENS_REGISTRY_ABI
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def owner_of(self, name: str) -> str:
        try:
            return self._wrapper.functions.ownerOf(token_id(name)).call()
        except _TRANSPORT_ERRORS as exc:
            raise RegistryReadError(f"failed to read owner of {name}: {exc}") from exc

    def get_data(self, name: str) -> NodeData:
        try:
            owner, fuses, expiry = self._wrapper.functions.getData(token_id(name)).call()
        except _TRANSPORT_ERRORS as exc:
            raise RegistryReadError(f"failed to read data of {name}: {exc}") from exc
        return NodeData(name=name, owner=owner, fuses=int(fuses), expiry=int(expiry))

    def resolver_of(self, name: str) -> str:
        try:
            return self._ens.functions.resolver(namehash(name)).call()
        except _TRANSPORT_ERRORS as exc:
            raise RegistryReadError(f"failed to read resolver of {name}: {exc}") from exc

    def content_pointer(self, name: str) -> bytes:
        resolver = self.resolver_of(name)
        if is_zero_address(resolver):
            return b""
        contract = self._web3.eth.contract(address=resolver, abi=RESOLVER_ABI)
        try:
            return bytes(contract.functions.contenthash(namehash(name)).call())
        except _TRANSPORT_ERRORS as exc:
            raise RegistryReadError(f"failed to read contenthash of {name}: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create_child(
        self,
        parent: str,
        label: str,
        owner: str,
        resolver: str,
        ttl: int,
        fuses: int,
        expiry: int,
    ) -> str:
        name = child_name(label, parent)
        data = calls.set_subnode_record(
            namehash(parent), label, owner, resolver, ttl, check_burn(fuses), expiry
        )
        try:
            return self._send(self._network.name_wrapper, data)
        except (ContractLogicError, TransactionReverted) as exc:
            # A revert on a now-occupied label means another deployment won.
            if not is_zero_address(self.owner_of(name)):
                raise VersionSlotConflict(name) from exc
            raise RegistryWriteError(f"creating {name} reverted: {exc}") from exc
        except _TRANSPORT_ERRORS as exc:
            # Includes receipt timeouts: the create may already be on its way.
            raise WriteUnconfirmed(f"creating {name} was not confirmed: {exc}") from exc

    def set_content_pointer(self, name: str, pointer: bytes) -> str:
        resolver = self.resolver_of(name)
        if is_zero_address(resolver):
            raise RegistryWriteError(f"{name} has no resolver")
        data = calls.set_contenthash(namehash(name), pointer)
        try:
            return self._send(resolver, data)
        except (ContractLogicError, TransactionReverted) as exc:
            raise RegistryWriteError(f"setting contenthash of {name} reverted: {exc}") from exc
        except _TRANSPORT_ERRORS as exc:
            raise RegistryWriteError(f"failed to set contenthash of {name}: {exc}") from exc

    def set_fuses(self, name: str, mask: int) -> str:
        data = calls.set_fuses(namehash(name), check_owner_controlled(mask))
        try:
            return self._send(self._network.name_wrapper, data)
        except (ContractLogicError, TransactionReverted) as exc:
            raise RegistryWriteError(f"burning fuses on {name} reverted: {exc}") from exc
        except _TRANSPORT_ERRORS as exc:
            raise RegistryWriteError(f"failed to burn fuses on {name}: {exc}") from exc

    def _send(self, to: str, data: bytes) -> str:
        if self._account is None:
            raise AuthorizationError("a signer key is required to write to the registry")
        return send_transaction(
            self._web3,
            self._account,
            to,
            data,
            receipt_timeout=self._receipt_timeout,
        )


__all__ = ["NameRegistry", "NameWrapperRegistry", "NodeData", "ZERO_ADDRESS"]
