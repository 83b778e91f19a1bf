"""Safe multisig governance via the Safe Transaction Service.

Proposals are Safe transactions.  The SafeTx EIP-712 hash is computed locally,
signed by the configured owner key and posted to the transaction service; that
signature is the proposer's first confirmation.  Further confirmations are
collected by the service, and execution is an on-chain ``execTransaction``
carrying all owner signatures sorted by owner address.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests
from eth_abi import encode
from eth_account.signers.local import LocalAccount
from eth_utils import keccak, to_checksum_address
from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from .. import calls
from ..chain import TransactionReverted, send_transaction
from ..config import NetworkProfile, Operation
from ..errors import (
    AuthorizationError,
    GovernanceError,
    GovernanceUnavailable,
    ProposalNotFound,
)
from ..names import ZERO_ADDRESS, same_account
from ..plan import BundledCall, bundle
from .base import GovernanceBackend, Proposal, ProposalState, ProposalStatus

LOG = logging.getLogger(__name__)

DOMAIN_TYPEHASH = keccak(text="EIP712Domain(uint256 chainId,address verifyingContract)")
SAFE_TX_TYPEHASH = keccak(
    text=(
        "SafeTx(address to,uint256 value,bytes data,uint8 operation,uint256 safeTxGas,"
        "uint256 baseGas,uint256 gasPrice,address gasToken,address refundReceiver,uint256 nonce)"
    )
)

ORIGIN_MAX_LENGTH = 200


def safe_tx_hash(safe_address: str, chain_id: int, call: BundledCall, nonce: int) -> bytes:
    """EIP-712 hash of a Safe transaction with zero gas refund parameters."""

    domain_separator = keccak(
        encode(
            ["bytes32", "uint256", "address"],
            [DOMAIN_TYPEHASH, chain_id, to_checksum_address(safe_address)],
        )
    )
    struct_hash = keccak(
        encode(
            [
                "bytes32",
                "address",
                "uint256",
                "bytes32",
                "uint8",
                "uint256",
                "uint256",
                "uint256",
                "address",
                "address",
                "uint256",
            ],
            [
                SAFE_TX_TYPEHASH,
                to_checksum_address(call.to),
                call.value,
                keccak(call.data),
                call.operation,
                0,
                0,
                0,
                ZERO_ADDRESS,
                ZERO_ADDRESS,
                nonce,
            ],
        )
    )
    return keccak(b"\x19\x01" + domain_separator + struct_hash)


def queue_url(network: NetworkProfile, safe_address: str, proposal_id: str) -> str:
    safe = to_checksum_address(safe_address)
    return (
        f"https://app.safe.global/transactions/tx?safe={network.safe_app_prefix}:{safe}"
        f"&id=multisig_{safe}_{proposal_id}"
    )


def _hex(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def _same_call(call: BundledCall, tx: Dict[str, Any]) -> bool:
    data = (tx.get("data") or "0x").lower()
    return (
        same_account(tx.get("to"), call.to)
        and int(tx.get("value") or 0) == call.value
        and int(tx.get("operation") or 0) == call.operation
        and data == _hex(call.data)
    )


class SafeGovernanceClient(GovernanceBackend):
    """Governance backend for a Safe multisig."""

    def __init__(
        self,
        safe_address: str,
        network: NetworkProfile,
        *,
        account: Optional[LocalAccount] = None,
        web3: Optional[Web3] = None,
        service_url: Optional[str] = None,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        receipt_timeout: float = 300.0,
    ) -> None:
        self._safe = to_checksum_address(safe_address)
        self._network = network
        self._account = account
        self._web3 = web3
        self._base_url = (service_url or network.safe_service_url).rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout
        self._receipt_timeout = receipt_timeout
        if api_key:
            self._session.headers["Authorization"] = f"Bearer {api_key}"

    @property
    def safe_address(self) -> str:
        return self._safe

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------
    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except RequestException as exc:
            raise GovernanceUnavailable(f"{method} {url} failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthorizationError(
                f"transaction service refused {method} {path} ({response.status_code}): {response.text}"
            )
        if response.status_code == 404:
            raise ProposalNotFound(f"{path} not found on the transaction service")
        if response.status_code >= 500:
            raise GovernanceUnavailable(
                f"transaction service error {response.status_code} on {method} {path}"
            )
        if response.status_code >= 400:
            raise GovernanceError(
                f"transaction service rejected {method} {path} ({response.status_code}): {response.text}"
            )
        if not response.content:
            return None
        return response.json()

    def safe_info(self) -> Dict[str, Any]:
        info = self._request("GET", f"/api/v1/safes/{self._safe}/")
        return {
            "nonce": int(info["nonce"]),
            "threshold": int(info["threshold"]),
            "owners": list(info.get("owners", [])),
        }

    def _pending(self, nonce: int) -> List[Dict[str, Any]]:
        payload = self._request(
            "GET",
            f"/api/v1/safes/{self._safe}/multisig-transactions/",
            params={"executed": "false", "nonce__gte": nonce, "ordering": "nonce", "limit": 100},
        )
        return list((payload or {}).get("results", []))

    def _require_owner(self, info: Dict[str, Any]) -> LocalAccount:
        if self._account is None:
            raise AuthorizationError("a signer key is required to act on the Safe")
        if not any(same_account(owner, self._account.address) for owner in info["owners"]):
            raise AuthorizationError(
                f"signer {self._account.address} is not an owner of Safe {self._safe}"
            )
        return self._account

    def _sign(self, account: LocalAccount, digest: bytes) -> str:
        return _hex(account.unsafe_sign_hash(digest).signature)

    # ------------------------------------------------------------------
    # GovernanceBackend
    # ------------------------------------------------------------------
    def check_signer(self) -> None:
        self._require_owner(self.safe_info())

    def propose(self, operations: Sequence[Operation], *, origin: Optional[str] = None) -> Proposal:
        info = self.safe_info()
        account = self._require_owner(info)
        call = bundle(operations, self._network.multisend)

        pending = self._pending(info["nonce"])
        for tx in pending:
            if _same_call(call, tx):
                LOG.info(
                    "Identical proposal %s already pending at nonce %s; reusing it",
                    tx["safeTxHash"],
                    tx["nonce"],
                )
                return Proposal(
                    proposal_id=tx["safeTxHash"],
                    safe_address=self._safe,
                    nonce=int(tx["nonce"]),
                    operations=tuple(operations),
                    required_approvals=int(tx.get("confirmationsRequired") or info["threshold"]),
                    current_approvals=len(tx.get("confirmations") or []),
                    batched=call.batched,
                    duplicate=True,
                )

        nonce = max([info["nonce"]] + [int(tx["nonce"]) + 1 for tx in pending])
        digest = safe_tx_hash(self._safe, self._network.chain_id, call, nonce)
        proposal_id = _hex(digest)
        body = {
            "to": to_checksum_address(call.to),
            "value": str(call.value),
            "data": _hex(call.data),
            "operation": call.operation,
            "safeTxGas": "0",
            "baseGas": "0",
            "gasPrice": "0",
            "gasToken": ZERO_ADDRESS,
            "refundReceiver": ZERO_ADDRESS,
            "nonce": nonce,
            "contractTransactionHash": proposal_id,
            "sender": account.address,
            "signature": self._sign(account, digest),
        }
        if origin:
            body["origin"] = origin[:ORIGIN_MAX_LENGTH]

        self._request("POST", f"/api/v1/safes/{self._safe}/multisig-transactions/", json=body)
        LOG.info(
            "Proposed %d operation(s) to Safe %s as %s (nonce %d)",
            len(operations),
            self._safe,
            proposal_id,
            nonce,
        )
        return Proposal(
            proposal_id=proposal_id,
            safe_address=self._safe,
            nonce=nonce,
            operations=tuple(operations),
            required_approvals=info["threshold"],
            current_approvals=1,
            batched=call.batched,
        )

    def _transaction(self, proposal_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/v1/multisig-transactions/{proposal_id}/")

    def status(self, proposal_id: str) -> ProposalStatus:
        return self._status(proposal_id, self._transaction(proposal_id), self.safe_info())

    def _status(self, proposal_id: str, tx: Dict[str, Any], info: Dict[str, Any]) -> ProposalStatus:
        approvals = len(tx.get("confirmations") or [])
        required = int(tx.get("confirmationsRequired") or info["threshold"])
        nonce = int(tx["nonce"])
        executed = bool(tx.get("isExecuted"))

        if executed:
            state = ProposalState.EXECUTED if tx.get("isSuccessful") else ProposalState.FAILED
        elif info["nonce"] > nonce:
            state = ProposalState.REPLACED
        elif approvals >= required:
            state = ProposalState.READY_TO_EXECUTE
        else:
            state = ProposalState.AWAITING_THRESHOLD

        return ProposalStatus(
            proposal_id=proposal_id,
            state=state,
            approvals=approvals,
            required=required,
            nonce=nonce,
            batched=int(tx.get("operation") or 0) == calls.DELEGATE_CALL,
            executed=executed,
            successful=tx.get("isSuccessful"),
            transaction_hash=tx.get("transactionHash"),
        )

    def approve(self, proposal_id: str) -> ProposalStatus:
        account = self._require_owner(self.safe_info())
        digest = bytes.fromhex(proposal_id[2:] if proposal_id.startswith("0x") else proposal_id)
        self._request(
            "POST",
            f"/api/v1/multisig-transactions/{proposal_id}/confirmations/",
            json={"signature": self._sign(account, digest)},
        )
        LOG.info("Signer %s approved %s", account.address, proposal_id)
        return self.status(proposal_id)

    def execute(self, proposal_id: str) -> str:
        tx = self._transaction(proposal_id)
        info = self.safe_info()
        status = self._status(proposal_id, tx, info)
        if not status.ready:
            raise GovernanceError(
                f"proposal {proposal_id} is {status.state.value} "
                f"({status.approvals}/{status.required} approvals); cannot execute",
            )
        if self._account is None or self._web3 is None:
            raise AuthorizationError("executing a proposal requires a signer key and an RPC endpoint")

        if status.nonce != info["nonce"]:
            raise GovernanceError(
                f"proposal {proposal_id} has nonce {status.nonce} but the Safe is at nonce {info['nonce']}",
                hint="Execute the queued proposals with lower nonces first.",
            )
        confirmations = sorted(tx.get("confirmations") or [], key=lambda c: int(c["owner"], 16))
        signatures = b"".join(bytes.fromhex(c["signature"][2:]) for c in confirmations)
        data = calls.exec_transaction(
            tx["to"],
            int(tx.get("value") or 0),
            bytes.fromhex((tx.get("data") or "0x")[2:]),
            int(tx.get("operation") or 0),
            signatures,
        )
        try:
            tx_hash = send_transaction(
                self._web3,
                self._account,
                self._safe,
                data,
                receipt_timeout=self._receipt_timeout,
            )
        except TransactionReverted as exc:
            raise GovernanceError(f"execution of {proposal_id} reverted in {exc.tx_hash}") from exc
        except ContractLogicError as exc:
            raise GovernanceError(f"execution of {proposal_id} would revert: {exc}") from exc
        except TimeExhausted as exc:
            raise GovernanceError(
                f"execution of {proposal_id} was sent but not mined in time: {exc}",
                hint="Check the proposal status before executing again.",
            ) from exc
        except (Web3Exception, RequestException, ValueError, OSError) as exc:
            raise GovernanceUnavailable(f"failed to execute {proposal_id}: {exc}") from exc
        LOG.info("Executed proposal %s in %s", proposal_id, tx_hash)
        return tx_hash
