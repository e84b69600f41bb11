"""Builds the decision context from the portfolio, yields and history."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Iterable

from ..constants import NATIVE_SYMBOL
from ..data.defillama import PriceBook
from ..decision import DecisionContext
from ..domain import ApyTrend, TransactionRecord, YieldOpportunity
from ..processors import analyze_trends, hours_since
from ..settings import AgentSettings, StrategySettings
from .context import CycleContext


def select_opportunities(
    opportunities: Iterable[YieldOpportunity],
    strategy: StrategySettings,
    limit: int,
) -> list[YieldOpportunity]:
    """Whitelisted, liquid, positive-yield opportunities, best score first."""
    protocols = set(strategy.whitelisted_protocols)
    assets = set(strategy.whitelisted_assets)
    eligible = [
        o
        for o in opportunities
        if o.supply_apy > 0
        and o.protocol in protocols
        and o.asset in assets
        and o.tvl_usd >= strategy.min_tvl
    ]
    eligible.sort(key=lambda o: o.score, reverse=True)
    return eligible[:limit]


def whitelisted_trends(
    trends: Iterable[ApyTrend], strategy: StrategySettings
) -> list[ApyTrend]:
    protocols = set(strategy.whitelisted_protocols)
    assets = set(strategy.whitelisted_assets)
    return [t for t in trends if t.protocol in protocols and t.asset in assets]


def describe_decision(record: TransactionRecord, now: datetime) -> str:
    """One-line summary of a past action for the provider's memory."""
    if record.created_at is not None:
        age = f"{int(hours_since(record.created_at, now))}h ago"
    else:
        age = "recently"
    summary = f" - {record.ai_reasoning}" if record.ai_reasoning else ""
    return (
        f"{age}: {record.action_type} {record.amount} {record.asset} "
        f"on {record.protocol}{summary}"
    )


def estimate_gas_cost_usd(prices: PriceBook, settings: AgentSettings) -> float:
    bnb_price = prices.get(NATIVE_SYMBOL) or settings.fallback_bnb_price_usd
    return round(settings.gas_units_estimate_bnb * bnb_price, 4)


async def assemble_context(ctx: CycleContext) -> None:
    """Gather history concurrently; any history read that fails falls back to empty."""
    state = ctx.state
    log = state.logger
    s = state.settings
    strategy = ctx.strategy_required
    balances = ctx.balances_required
    positions = ctx.positions_required
    now = datetime.now(timezone.utc)

    samples, decisions, opened = await asyncio.gather(
        state.store.get_rate_samples(now - timedelta(hours=s.trend_lookback_hours)),
        state.store.get_recent_decisions(ctx.user_id, s.recent_decisions_limit),
        state.store.get_position_ages(ctx.user_id),
        return_exceptions=True,
    )
    if isinstance(samples, BaseException):
        log.warning("Failed to load rate history: %s", samples)
        samples = []
    if isinstance(decisions, BaseException):
        log.warning("Failed to load recent decisions: %s", decisions)
        decisions = []
    if isinstance(opened, BaseException):
        log.warning("Failed to load position ages: %s", opened)
        opened = {}

    ctx.decision_context = DecisionContext(
        wallet_balances=[
            b
            for b in balances
            if b.symbol == NATIVE_SYMBOL or b.value_usd >= s.dust_floor_usd
        ],
        positions=positions,
        opportunities=select_opportunities(
            state.agent.latest_yields, strategy, s.top_opportunities
        ),
        risk_level=strategy.risk_level.value,
        apy_trends=whitelisted_trends(analyze_trends(samples), strategy),
        recent_actions=[describe_decision(r, now) for r in decisions],
        position_ages={
            key: round(hours_since(moment, now), 1) for key, moment in opened.items()
        },
        estimated_gas_cost_usd=estimate_gas_cost_usd(state.prices, s),
        total_portfolio_value=(
            sum(b.value_usd for b in balances) + sum(p.value_usd for p in positions)
        ),
    )
    log.debug(
        "Decision context: %d opportunities, %d trends, %d recent actions",
        len(ctx.decision_context.opportunities),
        len(ctx.decision_context.apy_trends),
        len(ctx.decision_context.recent_actions),
    )
