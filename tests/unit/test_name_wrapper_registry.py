from typing import Callable, Dict

import pytest
import requests
from eth_account import Account
from web3.exceptions import ContractLogicError, TimeExhausted

from ens_publish import calls, contenthash
from ens_publish import registry as registry_module
from ens_publish.chain import TransactionReverted
from ens_publish.config import NETWORKS
from ens_publish.errors import (
    AuthorizationError,
    RegistryReadError,
    RegistryWriteError,
    VersionSlotConflict,
    WriteUnconfirmed,
)
from ens_publish.fuses import PERMANENT_PUBLICATION
from ens_publish.names import ZERO_ADDRESS, namehash, token_id
from ens_publish.registry import NameWrapperRegistry

from fakes import GOVERNANCE, PARENT

NETWORK = NETWORKS["sepolia"]
RESOLVER = "0x" + "77" * 20
SIGNER = Account.from_key("0x" + "4c" * 32)
CID = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"


class StubCall:
    def __init__(self, func: Callable[[], object]) -> None:
        self._func = func

    def call(self):
        return self._func()


class StubChain:
    """Just enough of ``web3.eth`` for the registry's contract reads."""

    def __init__(self) -> None:
        self.owners: Dict[int, str] = {}
        self.data: Dict[int, tuple] = {}
        self.resolvers: Dict[bytes, str] = {}
        self.content: Dict[bytes, bytes] = {}
        self.read_error = None

    def _read(self, func):
        def run():
            if self.read_error is not None:
                raise self.read_error
            return func()

        return StubCall(run)

    # contract functions ------------------------------------------------
    def ownerOf(self, token):
        return self._read(lambda: self.owners.get(token, ZERO_ADDRESS))

    def getData(self, token):
        return self._read(lambda: self.data.get(token, (ZERO_ADDRESS, 0, 0)))

    def resolver(self, node):
        return self._read(lambda: self.resolvers.get(bytes(node), ZERO_ADDRESS))

    def contenthash(self, node):
        return self._read(lambda: self.content.get(bytes(node), b""))

    # web3.eth ------------------------------------------------------------
    def contract(self, *, address, abi):
        contract = type("StubContract", (), {})()
        contract.address = address
        contract.functions = self
        return contract


class StubWeb3:
    def __init__(self) -> None:
        self.eth = StubChain()


def build_registry(monkeypatch, *, error=None, on_send=None, account=SIGNER):
    web3 = StubWeb3()
    sent = []

    def fake_send(web3_, account_, to, data, **kwargs):
        sent.append((to, data))
        if on_send is not None:
            on_send()
        if error is not None:
            raise error
        return "0x" + "aa" * 32

    monkeypatch.setattr(registry_module, "send_transaction", fake_send)
    return NameWrapperRegistry(web3, NETWORK, account=account), web3.eth, sent


def create(registry):
    return registry.create_child(
        PARENT, "v0", GOVERNANCE, RESOLVER, 0, PERMANENT_PUBLICATION, 2524608000
    )


# ----------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------
def test_reads_go_through_the_name_wrapper(monkeypatch):
    registry, chain, _ = build_registry(monkeypatch)
    chain.owners[token_id("v0.site.eth")] = GOVERNANCE
    chain.data[token_id("v0.site.eth")] = (GOVERNANCE, PERMANENT_PUBLICATION, 2524608000)

    node = registry.get_data("v0.site.eth")

    assert registry.owner_of("v0.site.eth") == GOVERNANCE
    assert registry.owner_of("v1.site.eth") == ZERO_ADDRESS
    assert node.exists
    assert node.fuses == PERMANENT_PUBLICATION
    assert node.expiry == 2524608000


def test_content_pointer_uses_the_name_resolver(monkeypatch):
    registry, chain, _ = build_registry(monkeypatch)
    chain.resolvers[namehash("v0.site.eth")] = RESOLVER
    chain.content[namehash("v0.site.eth")] = contenthash.encode(CID)

    assert contenthash.decode(registry.content_pointer("v0.site.eth")) == CID
    assert registry.content_pointer("v1.site.eth") == b""


@pytest.mark.parametrize(
    "error",
    [requests.exceptions.ConnectionError("refused"), OSError("reset"), ValueError("bad response")],
)
def test_transport_errors_become_read_errors(monkeypatch, error):
    registry, chain, _ = build_registry(monkeypatch)
    chain.read_error = error

    with pytest.raises(RegistryReadError) as excinfo:
        registry.owner_of("v0.site.eth")

    assert excinfo.value.retryable
    assert excinfo.value.__cause__ is error


# ----------------------------------------------------------------------
# Writes
# ----------------------------------------------------------------------
def test_create_child_sends_set_subnode_record(monkeypatch):
    registry, _, sent = build_registry(monkeypatch)

    assert create(registry) == "0x" + "aa" * 32

    to, data = sent[0]
    assert to == NETWORK.name_wrapper
    assert data == calls.set_subnode_record(
        namehash(PARENT), "v0", GOVERNANCE, RESOLVER, 0, PERMANENT_PUBLICATION, 2524608000
    )


def test_revert_on_occupied_label_is_version_conflict(monkeypatch):
    chain_ref = {}

    def someone_else_won():
        chain_ref["chain"].owners[token_id("v0.site.eth")] = "0x" + "22" * 20

    registry, chain, _ = build_registry(
        monkeypatch, error=ContractLogicError("execution reverted"), on_send=someone_else_won
    )
    chain_ref["chain"] = chain

    with pytest.raises(VersionSlotConflict) as excinfo:
        create(registry)

    assert excinfo.value.name == "v0.site.eth"


@pytest.mark.parametrize(
    "error", [ContractLogicError("execution reverted"), TransactionReverted("0x" + "bb" * 32)]
)
def test_revert_on_free_label_is_write_error(monkeypatch, error):
    registry, _, _ = build_registry(monkeypatch, error=error)

    with pytest.raises(RegistryWriteError) as excinfo:
        create(registry)

    assert not isinstance(excinfo.value, (VersionSlotConflict, WriteUnconfirmed))
    assert not excinfo.value.retryable


def test_receipt_timeout_is_unconfirmed(monkeypatch):
    registry, _, _ = build_registry(monkeypatch, error=TimeExhausted("tx sent, not mined"))

    with pytest.raises(WriteUnconfirmed) as excinfo:
        create(registry)

    assert "v0.site.eth" in str(excinfo.value)


def test_writes_require_a_signer(monkeypatch):
    registry, _, sent = build_registry(monkeypatch, account=None)

    with pytest.raises(AuthorizationError):
        create(registry)

    assert sent == []


def test_set_content_pointer_targets_the_resolver(monkeypatch):
    registry, chain, sent = build_registry(monkeypatch)
    chain.resolvers[namehash("v0.site.eth")] = RESOLVER
    pointer = contenthash.encode(CID)

    registry.set_content_pointer("v0.site.eth", pointer)

    assert sent == [(RESOLVER, calls.set_contenthash(namehash("v0.site.eth"), pointer))]


def test_set_content_pointer_without_resolver(monkeypatch):
    registry, _, sent = build_registry(monkeypatch)

    with pytest.raises(RegistryWriteError):
        registry.set_content_pointer("v0.site.eth", b"\xe3\x01")

    assert sent == []
