"""Wallet balance, position and supply-rate reads."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Mapping

from web3 import Web3

from ..abi import load_erc20_abi
from ..adapters.protocol_adapters import BaseProtocolAdapter, Protocol
from ..clients.chain import ChainClient
from ..constants import BSC_ASSETS, NATIVE_SYMBOL, ZERO_ADDRESS
from ..domain import PortfolioPosition, TokenBalance
from ..logger import get_logger
from ..units import format_units, usd_value
from .defillama import PriceBook

logger = get_logger(__name__)

NATIVE_DECIMALS = 18


class PortfolioLoadError(RuntimeError):
    """Raised when balances or positions cannot be read for a wallet."""


def _raise_on_failures(what: str, labels: list[str], results: list[object]) -> None:
    failures = [
        (label, r) for label, r in zip(labels, results) if isinstance(r, BaseException)
    ]
    for label, err in failures:
        logger.error("Failed to read %s for %s: %s", what, label, err)
    if failures:
        names = ", ".join(label for label, _ in failures)
        raise PortfolioLoadError(
            f"Failed to read {what} for {len(failures)} item(s): {names}"
        )


async def fetch_token_balance(chain: ChainClient, asset: str, wallet: str) -> int:
    """Live idle balance of ``asset`` (or native BNB) held by ``wallet``."""
    if asset == NATIVE_SYMBOL:
        return await chain.native_balance(wallet)
    info = BSC_ASSETS.get(asset)
    if info is None:
        raise ValueError(f"Unknown asset '{asset}'")
    return int(
        await chain.read(
            info["address"],
            load_erc20_abi(),
            "balanceOf",
            Web3.to_checksum_address(wallet),
        )
    )


async def fetch_wallet_balances(
    chain: ChainClient, wallet: str, prices: PriceBook
) -> list[TokenBalance]:
    """Read native BNB and every known ERC-20 balance for ``wallet``.

    Raises:
        PortfolioLoadError: If any read fails
    """
    symbols = [NATIVE_SYMBOL, *BSC_ASSETS.keys()]
    results = await asyncio.gather(
        *(fetch_token_balance(chain, symbol, wallet) for symbol in symbols),
        return_exceptions=True,
    )
    _raise_on_failures("wallet balance", symbols, list(results))

    balances: list[TokenBalance] = []
    for symbol, raw in zip(symbols, results):
        assert isinstance(raw, int)
        if symbol == NATIVE_SYMBOL:
            address, decimals = ZERO_ADDRESS, NATIVE_DECIMALS
        else:
            info = BSC_ASSETS[symbol]
            address, decimals = info["address"], info["decimals"]
        balances.append(
            TokenBalance(
                symbol=symbol,
                address=address,
                raw_balance=raw,
                decimals=decimals,
                value_usd=usd_value(raw, decimals, prices.get(symbol)),
            )
        )
    return balances


async def fetch_positions(
    adapters: Mapping[Protocol, BaseProtocolAdapter],
    wallet: str,
    prices: PriceBook,
    apys: Mapping[tuple[str, str], float] | None = None,
    min_balance: float = 0.01,
) -> list[PortfolioPosition]:
    """Scan every (protocol, asset) market for supplied balances.

    Positions whose formatted balance is below ``min_balance`` are dust and
    are left out.

    Raises:
        PortfolioLoadError: If any read fails
    """
    apys = apys or {}
    markets = [
        (protocol, adapter, asset)
        for protocol, adapter in adapters.items()
        for asset in adapter.supported_assets
    ]
    results = await asyncio.gather(
        *(adapter.get_balance(asset, wallet) for _, adapter, asset in markets),
        return_exceptions=True,
    )
    labels = [f"{protocol.value}:{asset}" for protocol, _, asset in markets]
    _raise_on_failures("position", labels, list(results))

    positions: list[PortfolioPosition] = []
    for (protocol, _, asset), raw in zip(markets, results):
        assert isinstance(raw, int)
        decimals = BSC_ASSETS[asset]["decimals"]
        if raw <= 0 or format_units(raw, decimals) < Decimal(str(min_balance)):
            continue
        positions.append(
            PortfolioPosition(
                protocol=protocol.value,
                asset=asset,
                raw_balance=raw,
                decimals=decimals,
                apy=apys.get((protocol.value, asset), 0.0),
                value_usd=usd_value(raw, decimals, prices.get(asset)),
            )
        )
    logger.debug("Found %d positions for %s", len(positions), wallet)
    return positions


async def fetch_position(
    adapter: BaseProtocolAdapter, asset: str, wallet: str
) -> PortfolioPosition | None:
    """Read a single position, ``None`` when nothing is supplied."""
    raw = await adapter.get_balance(asset, wallet)
    if raw <= 0:
        return None
    return PortfolioPosition(
        protocol=adapter.adapter_name,
        asset=asset,
        raw_balance=raw,
        decimals=BSC_ASSETS[asset]["decimals"],
    )


async def fetch_onchain_yields(
    adapters: Mapping[Protocol, BaseProtocolAdapter],
) -> list[tuple[str, str, float]]:
    """Read the current supply APY for every market.

    Failed reads are logged and reported as 0 so market data can fill them in.
    """
    markets = [
        (protocol, adapter, asset)
        for protocol, adapter in adapters.items()
        for asset in adapter.supported_assets
    ]
    results = await asyncio.gather(
        *(adapter.get_apy(asset) for _, adapter, asset in markets),
        return_exceptions=True,
    )

    yields: list[tuple[str, str, float]] = []
    for (protocol, _, asset), result in zip(markets, results):
        if isinstance(result, BaseException):
            logger.warning(
                "Failed to read %s %s supply rate: %s", protocol.value, asset, result
            )
            apy = 0.0
        else:
            apy = float(result)
        yields.append((protocol.value, asset, apy))
    return yields
