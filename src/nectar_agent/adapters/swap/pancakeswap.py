from __future__ import annotations

import asyncio

from web3 import Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from ...abi import (
    load_erc20_abi,
    load_pancake_quoter_abi,
    load_pancake_smart_router_abi,
)
from ...clients.chain import ChainClient
from ...constants import (
    BSC_ASSETS,
    MAX_UINT256,
    PANCAKESWAP,
    PANCAKESWAP_FEE_TIERS,
)
from ...logger import get_logger
from ..protocol_adapters.base import SendTx, TxRequest

logger = get_logger(__name__)

BPS = 10_000


class NoLiquidityError(RuntimeError):
    """Raised when no fee tier returns a usable quote for a pair."""

    def __init__(self, token_in: str, token_out: str):
        self.token_in = token_in
        self.token_out = token_out
        super().__init__(f"No PancakeSwap V3 liquidity for {token_in} -> {token_out}")


class PancakeSwapRouter:
    """Single-hop PancakeSwap V3 swaps through the Smart Router."""

    def __init__(
        self,
        chain: ChainClient,
        router_address: str = PANCAKESWAP["smart_router"],
        quoter_address: str = PANCAKESWAP["quoter"],
        fee_tiers: tuple[int, ...] = PANCAKESWAP_FEE_TIERS,
    ):
        self.chain = chain
        self.router = Web3.to_checksum_address(router_address)
        self.quoter = Web3.to_checksum_address(quoter_address)
        self.fee_tiers = fee_tiers

    @staticmethod
    def _token(symbol: str) -> str:
        info = BSC_ASSETS.get(symbol)
        if info is None:
            raise ValueError(f"Unknown asset '{symbol}'")
        return Web3.to_checksum_address(info["address"])

    async def _quote_tier(
        self, token_in: str, token_out: str, amount_in: int, fee: int
    ) -> int:
        try:
            result = await self.chain.read(
                self.quoter,
                load_pancake_quoter_abi(),
                "quoteExactInputSingle",
                (token_in, token_out, amount_in, fee, 0),
            )
        except (ContractLogicError, BadFunctionCallOutput) as e:
            logger.debug("No pool for fee tier %d: %s", fee, e)
            return 0
        return int(result[0])

    async def best_quote(
        self, token_in: str, token_out: str, amount_in: int
    ) -> tuple[int, int]:
        """Quote every fee tier and return ``(fee, amount_out)`` for the best one."""
        quotes = await asyncio.gather(
            *(
                self._quote_tier(token_in, token_out, amount_in, fee)
                for fee in self.fee_tiers
            )
        )
        best_fee, best_out = max(zip(self.fee_tiers, quotes), key=lambda fq: fq[1])
        if best_out <= 0:
            raise NoLiquidityError(token_in, token_out)
        logger.debug(
            "Best quote %s -> %s: fee tier %d, out %d",
            token_in,
            token_out,
            best_fee,
            best_out,
        )
        return best_fee, best_out

    async def swap(
        self,
        asset_in: str,
        asset_out: str,
        amount_in: int,
        wallet: str,
        send: SendTx,
        slippage_bps: int = 100,
    ) -> str:
        """Swap ``amount_in`` of ``asset_in`` for ``asset_out`` into ``wallet``.

        Returns:
            The swap transaction hash.

        Raises:
            NoLiquidityError: If no fee tier can route the pair.
        """
        if amount_in <= 0:
            raise ValueError("Swap amount must be positive")
        token_in = self._token(asset_in)
        token_out = self._token(asset_out)
        recipient = Web3.to_checksum_address(wallet)

        fee, quoted_out = await self.best_quote(token_in, token_out, amount_in)
        min_out = quoted_out * (BPS - slippage_bps) // BPS

        erc20_abi = load_erc20_abi()
        allowance = int(
            await self.chain.read(
                token_in, erc20_abi, "allowance", recipient, self.router
            )
        )
        if allowance < amount_in:
            approve_data = self.chain.encode(
                token_in, erc20_abi, "approve", self.router, MAX_UINT256
            )
            approve_hash = await send(TxRequest(to=token_in, data=approve_data))
            logger.info(
                "Approved PancakeSwap router for %s (tx %s)", asset_in, approve_hash
            )

        data = self.chain.encode(
            self.router,
            load_pancake_smart_router_abi(),
            "exactInputSingle",
            (token_in, token_out, fee, recipient, amount_in, min_out, 0),
        )
        tx_hash = await send(TxRequest(to=self.router, data=data))
        logger.info(
            "Swapped %d %s -> %s (fee %d, min out %d, tx %s)",
            amount_in,
            asset_in,
            asset_out,
            fee,
            min_out,
            tx_hash,
        )
        return tx_hash
