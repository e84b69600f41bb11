"""Yield refresh shared by every user's cycle."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import requests

from ..data.defillama import LlamaPool, merge_yields
from ..data.onchain import fetch_onchain_yields
from ..domain import RateSample, YieldOpportunity
from ..events import YIELDS_UPDATED
from ..processors import analyze_trends, score_opportunities, trend_map
from ..state import AppState


async def refresh_yields(state: AppState) -> list[YieldOpportunity]:
    """Rebuild the scored opportunity list and cache it on the agent state.

    On-chain supply rates are merged with DeFiLlama TVL and trailing APY,
    scored, then re-scored with trends from stored rate history plus the
    fresh observations.
    """
    log = state.logger
    s = state.settings
    strategy = s.strategy_defaults
    now = datetime.now(timezone.utc)

    onchain = await fetch_onchain_yields(state.adapters)
    pools: list[LlamaPool] = []
    try:
        pools = await state.market.fetch_pools()
    except (requests.exceptions.RequestException, ValueError) as e:
        log.warning("DeFiLlama pools unavailable, using on-chain rates only: %s", e)

    opportunities = merge_yields(onchain, pools)
    score_opportunities(opportunities, strategy)

    fresh = [
        RateSample(o.protocol, o.asset, o.supply_apy, now)
        for o in opportunities
        if o.supply_apy > 0
    ]
    history: list[RateSample] = []
    try:
        history = await state.store.get_rate_samples(
            now - timedelta(hours=s.trend_lookback_hours)
        )
    except Exception as e:
        log.warning("Failed to load rate history, scoring without trends: %s", e)

    trends = analyze_trends([*history, *fresh])
    if trends:
        score_opportunities(opportunities, strategy, trend_map(trends))
    opportunities.sort(key=lambda o: o.score, reverse=True)

    state.agent.latest_yields = opportunities
    state.agent.yields_updated_at = now
    state.tasks.spawn("save_yield_snapshot", state.store.save_yield_snapshot(fresh))
    state.events.emit(
        YIELDS_UPDATED,
        {
            "count": len(opportunities),
            "top": [o.to_payload() for o in opportunities[:5]],
        },
    )
    log.info(
        "Refreshed %d yield opportunities (%d with trend history)",
        len(opportunities),
        len(trends),
    )
    return opportunities
