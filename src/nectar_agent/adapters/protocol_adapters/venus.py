from __future__ import annotations

from web3 import Web3

from ...abi import load_vtoken_abi
from ...constants import VENUS_BLOCKS_PER_DAY, VENUS_VTOKENS
from ...logger import get_logger
from .base import BaseProtocolAdapter, Protocol, SendTx, TxRequest

logger = get_logger(__name__)

MANTISSA = 10**18


def supply_rate_to_apy(rate_per_block: int) -> float:
    """Compound a per-block supply rate mantissa into an annual percentage."""
    daily_rate = rate_per_block / MANTISSA * VENUS_BLOCKS_PER_DAY
    return ((daily_rate + 1) ** 365 - 1) * 100


class VenusAdapter(BaseProtocolAdapter):
    """Venus Core Pool. Supplies mint vTokens; withdrawals redeem underlying."""

    protocol = Protocol.VENUS

    @property
    def supported_assets(self) -> list[str]:
        return list(VENUS_VTOKENS)

    def _vtoken(self, asset: str) -> str:
        self._require_supported(asset)
        return Web3.to_checksum_address(VENUS_VTOKENS[asset])

    async def supply(self, asset: str, amount: int, wallet: str, send: SendTx) -> str:
        vtoken = self._vtoken(asset)
        await self._ensure_allowance(
            self.underlying_address(asset), vtoken, amount, wallet, send
        )
        data = self.chain.encode(vtoken, load_vtoken_abi(), "mint", amount)
        tx_hash = await send(TxRequest(to=vtoken, data=data))
        logger.info("[venus] Supplied %d %s (tx %s)", amount, asset, tx_hash)
        return tx_hash

    async def withdraw(
        self, asset: str, amount: int, wallet: str, send: SendTx
    ) -> str:
        vtoken = self._vtoken(asset)
        data = self.chain.encode(vtoken, load_vtoken_abi(), "redeemUnderlying", amount)
        tx_hash = await send(TxRequest(to=vtoken, data=data))
        logger.info("[venus] Withdrew %d %s (tx %s)", amount, asset, tx_hash)
        return tx_hash

    async def get_balance(self, asset: str, wallet: str) -> int:
        if not self.supports(asset):
            return 0
        vtoken = self._vtoken(asset)
        abi = load_vtoken_abi()
        vtoken_balance = int(
            await self.chain.read(
                vtoken, abi, "balanceOf", Web3.to_checksum_address(wallet)
            )
        )
        if vtoken_balance == 0:
            return 0
        exchange_rate = int(await self.chain.read(vtoken, abi, "exchangeRateStored"))
        return vtoken_balance * exchange_rate // MANTISSA

    async def get_apy(self, asset: str) -> float:
        if not self.supports(asset):
            return 0.0
        rate = int(
            await self.chain.read(
                self._vtoken(asset), load_vtoken_abi(), "supplyRatePerBlock"
            )
        )
        return supply_rate_to_apy(rate)
