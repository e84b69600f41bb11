from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import requests

from nectar_agent.data.defillama import (
    DefiLlamaClient,
    LlamaPool,
    PriceBook,
    find_pool,
    merge_yields,
)


def llama_response(payload):
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = payload
    return response


def test_pool_from_json_maps_projects():
    pool = LlamaPool.from_json(
        {
            "project": "venus-core-pool",
            "symbol": "usdt",
            "tvlUsd": "120000000",
            "apy": 3.1,
            "apyBase": 2.9,
            "apyMean30d": None,
        }
    )

    assert pool == LlamaPool("venus", "USDT", 120_000_000.0, 3.1, 2.9, None)
    assert LlamaPool.from_json({"project": "uniswap-v3"}) is None


def test_find_pool_uses_aliases_and_picks_deepest():
    pools = [
        LlamaPool("aave", "BNB", 10.0),
        LlamaPool("aave", "WBNB", 50.0),
        LlamaPool("venus", "WBNB", 99.0),
    ]

    assert find_pool(pools, "aave", "WBNB").tvl_usd == 50.0
    assert find_pool(pools, "lista", "WBNB") is None


def test_merge_falls_back_to_market_apy_when_onchain_is_zero():
    pools = [
        LlamaPool("lista", "USD1", 2e7, apy=6.0, apy_base=5.0, apy_mean_30d=5.5),
        LlamaPool("venus", "USDT", 3e8, apy=9.0, apy_base=None),
    ]

    lista, venus, aave = merge_yields(
        [("lista", "USD1", 0.0), ("venus", "USDT", 3.2), ("aave", "USDC", 0.0)],
        pools,
    )

    assert lista.supply_apy == 5.0
    assert lista.trailing_apy == 5.5
    assert lista.tvl_usd == 2e7
    assert venus.supply_apy == 3.2
    assert venus.tvl_usd == 3e8
    assert aave.supply_apy == 0.0
    assert aave.tvl_usd == 0.0
    assert aave.trailing_apy is None


@pytest.mark.asyncio
async def test_fetch_pools_filters_chain_and_project():
    payload = {
        "data": [
            {"chain": "BSC", "project": "aave-v3", "symbol": "USDC", "tvlUsd": 1},
            {"chain": "Ethereum", "project": "aave-v3", "symbol": "USDC"},
            {"chain": "BSC", "project": "pancakeswap-amm", "symbol": "CAKE"},
            "garbage",
        ]
    }

    with patch(
        "nectar_agent.data.defillama.requests.get",
        return_value=llama_response(payload),
    ):
        pools = await DefiLlamaClient().fetch_pools()

    assert [(p.protocol, p.symbol) for p in pools] == [("aave", "USDC")]


@pytest.mark.asyncio
async def test_fetch_pools_rejects_malformed_body():
    with (
        patch(
            "nectar_agent.data.defillama.requests.get",
            return_value=llama_response({"status": "error"}),
        ),
        pytest.raises(ValueError, match="no 'data' list"),
    ):
        await DefiLlamaClient().fetch_pools()


@pytest.mark.asyncio
async def test_fetch_prices_matches_addresses_case_insensitively():
    payload = {
        "coins": {
            "bsc:0x55d398326f99059ff775485246999027b3197955": {"price": 1.0002},
            "bsc:0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c": {"price": "612.5"},
        }
    }
    addresses = {
        "USDT": "0x55d398326f99059fF775485246999027B3197955",
        "WBNB": "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c",
        "BTCB": "0x7130d2A12B9BCbFAe4f2634d864A1Ee1Ce3Ead9c",
    }

    with patch(
        "nectar_agent.data.defillama.requests.get",
        return_value=llama_response(payload),
    ) as get:
        prices = await DefiLlamaClient().fetch_prices(addresses)

    assert prices == {"USDT": 1.0002, "WBNB": 612.5}
    assert get.call_args.args[0].startswith("https://coins.llama.fi/prices/current/")


def test_price_book_mirrors_wbnb_to_bnb():
    book = PriceBook({"WBNB": 600.0})
    assert book.get("BNB") == 600.0

    book.update({"WBNB": 610.0, "USDT": 1.0})

    assert book.get("BNB") == 610.0
    assert book.get("DOGE") == 0.0
    assert book.get("DOGE", 1.0) == 1.0


@pytest.mark.asyncio
async def test_price_refresh_keeps_stale_prices_on_failure():
    book = PriceBook({"USDT": 1.0})
    client = MagicMock()
    client.fetch_prices = AsyncMock(
        side_effect=requests.exceptions.ConnectionError("down")
    )

    await book.refresh(client)

    assert book.as_dict() == {"USDT": 1.0}


@pytest.mark.asyncio
async def test_price_refresh_updates_prices():
    book = PriceBook()
    client = MagicMock()
    client.fetch_prices = AsyncMock(return_value={"WBNB": 580.0})

    await book.refresh(client)

    assert book.get("BNB") == 580.0
    addresses = client.fetch_prices.await_args.args[0]
    assert "USDT" in addresses and "WBNB" in addresses


@pytest.mark.asyncio
@pytest.mark.integration
async def test_fetch_pools_integration():
    pools = await DefiLlamaClient().fetch_pools()

    assert any(p.protocol == "venus" for p in pools)
