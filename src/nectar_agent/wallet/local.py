"""Signs and broadcasts agent transactions with a locally held key."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from ..adapters.protocol_adapters import SendTx, TxRequest
from ..constants import BSC_CHAIN_ID
from ..domain import AgentWallet
from ..logger import get_logger

logger = get_logger(__name__)


class TransactionRevertedError(RuntimeError):
    """Raised when a transaction was mined with a failed status."""

    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(f"Transaction {tx_hash} reverted")


class LocalWalletSigner:
    """Sends one transaction at a time and waits for it to be mined.

    Sends are serialized so each transaction picks up the next nonce.
    """

    def __init__(
        self,
        w3: Web3,
        private_key: str,
        chain_id: int = BSC_CHAIN_ID,
        receipt_timeout: float | None = None,
    ):
        self.w3 = w3
        self._account: LocalAccount = Account.from_key(private_key)  # pyrefly: ignore
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self._lock = asyncio.Lock()

    @property
    def address(self) -> str:
        return self._account.address

    async def send(self, tx: TxRequest) -> str:
        async with self._lock:
            return await asyncio.to_thread(self._send_sync, tx)

    def _send_sync(self, tx: TxRequest) -> str:
        sender = self._account.address
        params: dict[str, Any] = {
            "from": sender,
            "to": Web3.to_checksum_address(tx.to),
            "data": tx.data,
            "value": tx.value,
            "chainId": self.chain_id,
            "nonce": self.w3.eth.get_transaction_count(sender, "pending"),
            "gasPrice": self.w3.eth.gas_price,
        }
        params["gas"] = self.w3.eth.estimate_gas(params)  # pyrefly: ignore

        signed = self._account.sign_transaction(params)
        tx_hash = Web3.to_hex(self.w3.eth.send_raw_transaction(signed.raw_transaction))
        logger.info("Broadcast %s (to %s, value %d)", tx_hash, tx.to, tx.value)

        timeout = (
            self.receipt_timeout if self.receipt_timeout is not None else float("inf")
        )
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        if receipt["status"] != 1:
            raise TransactionRevertedError(tx_hash)
        logger.debug("Mined %s in block %s", tx_hash, receipt["blockNumber"])
        return tx_hash


def local_sender_factory(
    w3: Web3,
    private_key: str,
    chain_id: int = BSC_CHAIN_ID,
    receipt_timeout: float | None = None,
) -> Callable[[AgentWallet], SendTx]:
    """Build a factory handing out the signer's ``send`` for its own wallet only."""
    signer = LocalWalletSigner(w3, private_key, chain_id, receipt_timeout)

    def factory(wallet: AgentWallet) -> SendTx:
        if wallet.address.lower() != signer.address.lower():
            raise ValueError(
                f"Configured key controls {signer.address}, "
                f"not agent wallet {wallet.address}"
            )
        return signer.send

    return factory
