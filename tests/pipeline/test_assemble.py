from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from nectar_agent.data.defillama import PriceBook
from nectar_agent.domain import (
    PortfolioPosition,
    RateSample,
    TokenBalance,
    TransactionRecord,
    YieldOpportunity,
)
from nectar_agent.pipeline.assemble import (
    assemble_context,
    describe_decision,
    estimate_gas_cost_usd,
    select_opportunities,
)
from nectar_agent.pipeline.context import CycleContext
from nectar_agent.settings import AgentSettings, StrategySettings
from nectar_agent.state import AgentState
from nectar_agent.store import InMemoryPortfolioStore

NOW = datetime(2025, 6, 1, 12, tzinfo=timezone.utc)


def opp(protocol="venus", asset="USDT", apy=3.0, tvl=5e7, score=50.0):
    return YieldOpportunity(
        protocol, asset, "0x0", supply_apy=apy, tvl_usd=tvl, score=score
    )


def test_select_opportunities_filters_and_ranks():
    strategy = StrategySettings(whitelisted_protocols=["venus", "aave"])
    opportunities = [
        opp(score=40),
        opp(protocol="aave", score=70),
        opp(protocol="lista", score=90),
        opp(asset="DOGE", score=95),
        opp(apy=0.0, score=99),
        opp(tvl=1_000, score=98),
    ]

    selected = select_opportunities(opportunities, strategy, limit=5)

    assert [(o.protocol, o.score) for o in selected] == [("aave", 70), ("venus", 40)]
    assert len(select_opportunities(opportunities, strategy, limit=1)) == 1


def test_describe_decision():
    record = TransactionRecord(
        user_id="alice",
        action_type="supply",
        asset="USDT",
        protocol="venus",
        amount="100",
        tx_hash="0x1",
        ai_reasoning="best yield",
        created_at=NOW - timedelta(hours=5, minutes=40),
    )

    assert describe_decision(record, NOW) == (
        "5h ago: supply 100 USDT on venus - best yield"
    )


def test_gas_estimate_uses_fallback_bnb_price():
    settings = AgentSettings()

    assert estimate_gas_cost_usd(PriceBook(), settings) == 0.3
    assert estimate_gas_cost_usd(PriceBook({"WBNB": 700.0}), settings) == 0.35


def make_ctx(store) -> CycleContext:
    state = SimpleNamespace(
        settings=AgentSettings(),
        logger=logging.getLogger("test"),
        store=store,
        prices=PriceBook({"WBNB": 600.0}),
        agent=AgentState(latest_yields=[opp(score=60), opp(protocol="aave")]),
    )
    ctx = CycleContext(state=state, user_id="alice", dry_run=True)
    ctx.strategy = StrategySettings()
    ctx.balances = [
        TokenBalance("BNB", "0x0", 0, 18, 0.0),
        TokenBalance("USDT", "0x1", 5 * 10**17, 18, 0.5),
        TokenBalance("USDC", "0x2", 20 * 10**18, 18, 20.0),
    ]
    ctx.positions = [PortfolioPosition("venus", "USDT", 10**20, 18, 3.0, 100.0)]
    return ctx


@pytest.mark.asyncio
async def test_assemble_context_builds_the_provider_view():
    store = InMemoryPortfolioStore()
    now = datetime.now(timezone.utc)
    await store.save_yield_snapshot(
        [
            RateSample("venus", "USDT", 3.0, now - timedelta(hours=3)),
            RateSample("venus", "USDT", 3.4, now - timedelta(hours=1)),
        ]
    )
    await store.upsert_position("alice", "venus", "USDT", "100", 3.0)
    ctx = make_ctx(store)

    await assemble_context(ctx)

    context = ctx.decision_context_required
    assert [b.symbol for b in context.wallet_balances] == ["BNB", "USDC"]
    assert [o.protocol for o in context.opportunities] == ["venus", "aave"]
    assert context.risk_level == "medium"
    assert [t.key for t in context.apy_trends] == ["venus:USDT"]
    assert context.position_ages == {"venus:USDT": 0.0}
    assert context.estimated_gas_cost_usd == 0.3
    assert context.total_portfolio_value == pytest.approx(120.5)


@pytest.mark.asyncio
async def test_history_failures_fall_back_to_empty(monkeypatch):
    store = InMemoryPortfolioStore()

    async def broken(*args, **kwargs):
        raise ConnectionError("db down")

    monkeypatch.setattr(store, "get_rate_samples", broken)
    monkeypatch.setattr(store, "get_recent_decisions", broken)
    monkeypatch.setattr(store, "get_position_ages", broken)
    ctx = make_ctx(store)

    await assemble_context(ctx)

    context = ctx.decision_context_required
    assert context.apy_trends == []
    assert context.recent_actions == []
    assert context.position_ages == {}


@pytest.mark.asyncio
async def test_trends_are_limited_to_whitelisted_markets():
    store = InMemoryPortfolioStore()
    now = datetime.now(timezone.utc)
    samples = []
    for protocol, asset in (("venus", "USDT"), ("lista", "USDT"), ("venus", "FDUSD")):
        samples += [
            RateSample(protocol, asset, 3.0, now - timedelta(hours=3)),
            RateSample(protocol, asset, 3.4, now - timedelta(hours=1)),
        ]
    await store.save_yield_snapshot(samples)
    ctx = make_ctx(store)
    ctx.strategy = StrategySettings(
        whitelisted_protocols=["venus", "aave"], whitelisted_assets=["USDT", "USDC"]
    )

    await assemble_context(ctx)

    assert [t.key for t in ctx.decision_context_required.apy_trends] == ["venus:USDT"]
