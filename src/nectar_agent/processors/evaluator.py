from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

from ..domain import PortfolioPosition, RebalanceAction, YieldOpportunity
from ..logger import get_logger
from ..settings import StrategySettings

logger = get_logger(__name__)


def hours_since(moment: datetime | None, now: datetime | None = None) -> float:
    """Hours elapsed since ``moment``; infinite when it never happened."""
    if moment is None:
        return float("inf")
    now = now or datetime.now(timezone.utc)
    return (now - moment).total_seconds() / 3600


def evaluate_rebalance(
    positions: Sequence[PortfolioPosition],
    opportunities: Sequence[YieldOpportunity],
    settings: StrategySettings,
    last_rebalance_time: datetime | None,
    now: datetime | None = None,
) -> list[RebalanceAction]:
    """Propose deterministic moves to better-yielding markets for the same asset.

    Returns nothing while the cooldown since ``last_rebalance_time`` is
    running. Otherwise each position is compared against the highest supply
    APY alternative in another whitelisted protocol with at least
    ``min_tvl`` of liquidity, and a move is proposed when the alternative's
    trailing APY (or supply APY) beats the position by ``apy_threshold``.
    """
    elapsed = hours_since(last_rebalance_time, now)
    if elapsed < settings.rebalance_cooldown_hours:
        logger.debug(
            "Rebalance cooldown active: %.2fh elapsed of %.2fh",
            elapsed,
            settings.rebalance_cooldown_hours,
        )
        return []

    whitelist = set(settings.whitelisted_protocols)
    actions: list[RebalanceAction] = []
    for position in positions:
        alternatives = [
            opp
            for opp in opportunities
            if opp.asset == position.asset
            and opp.protocol != position.protocol
            and opp.protocol in whitelist
            and opp.tvl_usd >= settings.min_tvl
        ]
        if not alternatives:
            continue

        best = max(alternatives, key=lambda opp: opp.supply_apy)
        new_apy = best.effective_apy
        improvement = new_apy - position.apy
        if improvement < settings.apy_threshold:
            continue

        actions.append(
            RebalanceAction(
                asset=position.asset,
                from_protocol=position.protocol,
                to_protocol=best.protocol,
                amount=position.raw_balance,
                reason=(
                    f"APY improvement of {improvement:.2f}% "
                    f"({position.apy:.2f}% -> {new_apy:.2f}%)"
                ),
                old_apy=position.apy,
                new_apy=new_apy,
            )
        )
    return actions
