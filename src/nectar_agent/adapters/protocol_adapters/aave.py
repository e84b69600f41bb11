from __future__ import annotations

from web3 import Web3

from ...abi import load_aave_pool_abi, load_erc20_abi
from ...clients.chain import ChainClient
from ...constants import AAVE_ATOKENS, AAVE_MAX_SANE_APY, AAVE_POOL
from ...logger import get_logger
from .base import BaseProtocolAdapter, Protocol, SendTx, TxRequest

logger = get_logger(__name__)

RAY = 10**27
# Position of currentLiquidityRate in the ReserveData tuple.
LIQUIDITY_RATE_INDEX = 2


class AaveAdapter(BaseProtocolAdapter):
    """Aave V3 on BSC. All markets share one Pool contract."""

    protocol = Protocol.AAVE

    def __init__(self, chain: ChainClient, pool_address: str = AAVE_POOL):
        super().__init__(chain)
        self.pool = Web3.to_checksum_address(pool_address)

    @property
    def supported_assets(self) -> list[str]:
        return list(AAVE_ATOKENS)

    async def supply(self, asset: str, amount: int, wallet: str, send: SendTx) -> str:
        self._require_supported(asset)
        underlying = self.underlying_address(asset)
        await self._ensure_allowance(underlying, self.pool, amount, wallet, send)
        data = self.chain.encode(
            self.pool,
            load_aave_pool_abi(),
            "supply",
            underlying,
            amount,
            Web3.to_checksum_address(wallet),
            0,
        )
        tx_hash = await send(TxRequest(to=self.pool, data=data))
        logger.info("[aave] Supplied %d %s (tx %s)", amount, asset, tx_hash)
        return tx_hash

    async def withdraw(
        self, asset: str, amount: int, wallet: str, send: SendTx
    ) -> str:
        self._require_supported(asset)
        data = self.chain.encode(
            self.pool,
            load_aave_pool_abi(),
            "withdraw",
            self.underlying_address(asset),
            amount,
            Web3.to_checksum_address(wallet),
        )
        tx_hash = await send(TxRequest(to=self.pool, data=data))
        logger.info("[aave] Withdrew %d %s (tx %s)", amount, asset, tx_hash)
        return tx_hash

    async def get_balance(self, asset: str, wallet: str) -> int:
        if not self.supports(asset):
            return 0
        return int(
            await self.chain.read(
                Web3.to_checksum_address(AAVE_ATOKENS[asset]),
                load_erc20_abi(),
                "balanceOf",
                Web3.to_checksum_address(wallet),
            )
        )

    async def get_apy(self, asset: str) -> float:
        if not self.supports(asset):
            return 0.0
        reserve = await self.chain.read(
            self.pool,
            load_aave_pool_abi(),
            "getReserveData",
            self.underlying_address(asset),
        )
        apy = int(reserve[LIQUIDITY_RATE_INDEX]) / RAY * 100
        if apy > AAVE_MAX_SANE_APY:
            logger.warning(
                "[aave] Ignoring implausible supply APY %.2f%% for %s", apy, asset
            )
            return 0.0
        return apy
