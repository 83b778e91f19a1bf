"""Thin web3 helpers: connecting and sending signed transactions."""

from __future__ import annotations

import logging
from typing import Any, Dict

from eth_account.signers.local import LocalAccount
from web3 import Web3

LOG = logging.getLogger(__name__)


class TransactionReverted(Exception):
    """A mined transaction finished with ``status == 0``."""

    def __init__(self, tx_hash: str) -> None:
        super().__init__(f"transaction {tx_hash} reverted")
        self.tx_hash = tx_hash


def connect(rpc_url: str, *, timeout: float = 30.0) -> Web3:
    """Return a ``Web3`` instance with an explicit transport timeout."""

    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))


def send_transaction(
    web3: Web3,
    account: LocalAccount,
    to: str,
    data: bytes,
    *,
    value: int = 0,
    receipt_timeout: float = 300.0,
) -> str:
    """Sign, send and wait for a transaction; return its hash.

    Gas is estimated up front so a reverting call fails before anything is
    broadcast.  Callers translate web3/transport errors at their boundary.
    """

    tx: Dict[str, Any] = {
        "from": account.address,
        "to": Web3.to_checksum_address(to),
        "data": Web3.to_hex(data),
        "value": value,
        "nonce": web3.eth.get_transaction_count(account.address, "pending"),
        "chainId": web3.eth.chain_id,
    }
    tx["gas"] = web3.eth.estimate_gas(tx)
    tx["gasPrice"] = web3.eth.gas_price

    signed = account.sign_transaction(tx)
    tx_hash = Web3.to_hex(web3.eth.send_raw_transaction(signed.raw_transaction))
    LOG.info("Sent transaction %s to %s, waiting for receipt", tx_hash, tx["to"])

    receipt = web3.eth.wait_for_transaction_receipt(tx_hash, timeout=receipt_timeout)
    if receipt["status"] != 1:
        raise TransactionReverted(tx_hash)
    LOG.debug("Transaction %s mined in block %s", tx_hash, receipt["blockNumber"])
    return tx_hash
