from __future__ import annotations

from web3 import Web3

from ...abi import load_erc4626_vault_abi
from ...constants import LISTA_VAULTS
from ...logger import get_logger
from .base import BaseProtocolAdapter, Protocol, SendTx, TxRequest

logger = get_logger(__name__)


class ListaAdapter(BaseProtocolAdapter):
    """Lista Moolah lending vaults (ERC-4626).

    Vaults do not expose a supply rate, so ``get_apy`` returns 0 and the
    yield refresh fills the figure in from market data.
    """

    protocol = Protocol.LISTA

    @property
    def supported_assets(self) -> list[str]:
        return list(LISTA_VAULTS)

    def _vault(self, asset: str) -> str:
        self._require_supported(asset)
        return Web3.to_checksum_address(LISTA_VAULTS[asset])

    async def supply(self, asset: str, amount: int, wallet: str, send: SendTx) -> str:
        vault = self._vault(asset)
        await self._ensure_allowance(
            self.underlying_address(asset), vault, amount, wallet, send
        )
        data = self.chain.encode(
            vault,
            load_erc4626_vault_abi(),
            "deposit",
            amount,
            Web3.to_checksum_address(wallet),
        )
        tx_hash = await send(TxRequest(to=vault, data=data))
        logger.info("[lista] Deposited %d %s (tx %s)", amount, asset, tx_hash)
        return tx_hash

    async def withdraw(
        self, asset: str, amount: int, wallet: str, send: SendTx
    ) -> str:
        vault = self._vault(asset)
        owner = Web3.to_checksum_address(wallet)
        data = self.chain.encode(
            vault, load_erc4626_vault_abi(), "withdraw", amount, owner, owner
        )
        tx_hash = await send(TxRequest(to=vault, data=data))
        logger.info("[lista] Withdrew %d %s (tx %s)", amount, asset, tx_hash)
        return tx_hash

    async def get_balance(self, asset: str, wallet: str) -> int:
        if not self.supports(asset):
            return 0
        vault = self._vault(asset)
        abi = load_erc4626_vault_abi()
        shares = int(
            await self.chain.read(
                vault, abi, "balanceOf", Web3.to_checksum_address(wallet)
            )
        )
        if shares == 0:
            return 0
        return int(await self.chain.read(vault, abi, "convertToAssets", shares))

    async def get_apy(self, asset: str) -> float:
        return 0.0
