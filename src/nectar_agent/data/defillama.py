"""DeFiLlama yields and coin prices."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Iterable

import backoff
import requests

from ..constants import (
    BSC_ASSETS,
    DEFILLAMA_CHAIN,
    DEFILLAMA_PRICES_URL,
    DEFILLAMA_PROJECTS,
    DEFILLAMA_SYMBOL_ALIASES,
    DEFILLAMA_YIELDS_URL,
    NATIVE_SYMBOL,
    WRAPPED_NATIVE_SYMBOL,
)
from ..domain import YieldOpportunity
from ..logger import get_logger

logger = get_logger(__name__)


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class LlamaPool:
    """The subset of a DeFiLlama pool entry the agent uses."""

    protocol: str
    symbol: str
    tvl_usd: float
    apy: float | None = None
    apy_base: float | None = None
    apy_mean_30d: float | None = None

    @classmethod
    def from_json(cls, entry: dict[str, Any]) -> LlamaPool | None:
        protocol = DEFILLAMA_PROJECTS.get(str(entry.get("project", "")))
        if protocol is None:
            return None
        return cls(
            protocol=protocol,
            symbol=str(entry.get("symbol", "")).upper(),
            tvl_usd=_optional_float(entry.get("tvlUsd")) or 0.0,
            apy=_optional_float(entry.get("apy")),
            apy_base=_optional_float(entry.get("apyBase")),
            apy_mean_30d=_optional_float(entry.get("apyMean30d")),
        )


class DefiLlamaClient:
    """Thin async wrapper over the public DeFiLlama HTTP APIs."""

    def __init__(
        self,
        yields_url: str = DEFILLAMA_YIELDS_URL,
        prices_url: str = DEFILLAMA_PRICES_URL,
        timeout: float = 10.0,
    ):
        self.yields_url = yields_url
        self.prices_url = prices_url
        self.timeout = timeout

    @backoff.on_exception(
        backoff.expo,
        (requests.exceptions.RequestException, requests.exceptions.HTTPError),
        max_tries=5,
        giveup=lambda e: (
            isinstance(e, requests.exceptions.HTTPError)
            and e.response is not None
            and e.response.status_code not in {429, 500, 502, 503, 504}
        ),
        jitter=backoff.full_jitter,
    )
    async def _get_json(self, url: str) -> Any:
        logger.debug("Calling %s", url)
        response = await asyncio.to_thread(requests.get, url, timeout=self.timeout)
        response.raise_for_status()
        try:
            return response.json()
        except json.JSONDecodeError:
            raise ValueError(f"Invalid JSON from DeFiLlama: {url}")

    async def fetch_pools(self) -> list[LlamaPool]:
        """Fetch BSC lending pools for the tracked projects.

        Raises:
            ValueError: If the response is malformed
            requests.exceptions.RequestException: If the request fails
        """
        data = await self._get_json(self.yields_url)
        entries = data.get("data") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise ValueError("DeFiLlama yields response has no 'data' list")

        pools: list[LlamaPool] = []
        for entry in entries:
            if not isinstance(entry, dict) or entry.get("chain") != DEFILLAMA_CHAIN:
                continue
            pool = LlamaPool.from_json(entry)
            if pool is not None:
                pools.append(pool)
        logger.debug("Fetched %d DeFiLlama pools", len(pools))
        return pools

    async def fetch_prices(self, addresses: dict[str, str]) -> dict[str, float]:
        """Fetch USD prices keyed by symbol for ``{symbol: address}``."""
        if not addresses:
            return {}
        coins = ",".join(f"bsc:{addr}" for addr in addresses.values())
        data = await self._get_json(f"{self.prices_url}/{coins}")
        coins_data = data.get("coins") if isinstance(data, dict) else None
        if not isinstance(coins_data, dict):
            raise ValueError("DeFiLlama prices response has no 'coins' map")

        by_address = {k.lower(): v for k, v in coins_data.items()}
        prices: dict[str, float] = {}
        for symbol, addr in addresses.items():
            entry = by_address.get(f"bsc:{addr}".lower())
            if not isinstance(entry, dict):
                continue
            price = _optional_float(entry.get("price"))
            if price is not None:
                prices[symbol] = price
        return prices


def find_pool(
    pools: Iterable[LlamaPool], protocol: str, asset: str
) -> LlamaPool | None:
    """Pick the deepest pool for ``(protocol, asset)``, honouring symbol aliases."""
    aliases = {a.upper() for a in DEFILLAMA_SYMBOL_ALIASES.get(asset, [asset])}
    candidates = [p for p in pools if p.protocol == protocol and p.symbol in aliases]
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.tvl_usd)


def merge_yields(
    onchain: Iterable[tuple[str, str, float]], pools: list[LlamaPool]
) -> list[YieldOpportunity]:
    """Combine on-chain supply rates with DeFiLlama TVL and trailing APY.

    When the on-chain rate reads zero (Lista vaults, failed reads) the
    DeFiLlama base APY is used instead.
    """
    opportunities: list[YieldOpportunity] = []
    for protocol, asset, apy in onchain:
        pool = find_pool(pools, protocol, asset)
        supply_apy = apy
        if supply_apy <= 0 and pool is not None:
            fallback = pool.apy_base if pool.apy_base is not None else pool.apy
            supply_apy = fallback or 0.0
        info = BSC_ASSETS.get(asset)
        opportunities.append(
            YieldOpportunity(
                protocol=protocol,
                asset=asset,
                asset_address=info["address"] if info else "",
                supply_apy=supply_apy,
                tvl_usd=pool.tvl_usd if pool else 0.0,
                trailing_apy=pool.apy_mean_30d if pool else None,
            )
        )
    return opportunities


class PriceBook:
    """USD prices by asset symbol, refreshed once per tick."""

    def __init__(self, prices: dict[str, float] | None = None):
        self._prices: dict[str, float] = dict(prices or {})
        if WRAPPED_NATIVE_SYMBOL in self._prices:
            self._prices.setdefault(
                NATIVE_SYMBOL, self._prices[WRAPPED_NATIVE_SYMBOL]
            )

    def get(self, symbol: str, default: float = 0.0) -> float:
        return self._prices.get(symbol, default)

    def update(self, prices: dict[str, float]) -> None:
        self._prices.update(prices)
        if WRAPPED_NATIVE_SYMBOL in prices:
            self._prices[NATIVE_SYMBOL] = prices[WRAPPED_NATIVE_SYMBOL]

    def as_dict(self) -> dict[str, float]:
        return dict(self._prices)

    async def refresh(self, client: DefiLlamaClient) -> None:
        """Fetch prices for every known asset; keep stale prices on failure."""
        addresses = {symbol: info["address"] for symbol, info in BSC_ASSETS.items()}
        try:
            prices = await client.fetch_prices(addresses)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("Price refresh failed, keeping cached prices: %s", e)
            return
        self.update(prices)
        logger.debug("Refreshed %d prices", len(prices))
