from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Mapping

from ..constants import DEFAULT_PROTOCOL_TRUST
from ..domain import Trend, TrendData, YieldOpportunity
from ..settings import StrategySettings

APY_WEIGHT = 0.30
TVL_WEIGHT = 0.20
TRUST_WEIGHT = 0.20
UTILIZATION_WEIGHT = 0.10
STABILITY_WEIGHT = 0.10
TREND_WEIGHT = 0.10

APY_CEILING = 20.0
# log10 of $1B; TVL above this earns the full safety score.
TVL_LOG_CEILING = 9.0
UTILIZATION_KNEE = 80.0
UNKNOWN_UTILIZATION_SCORE = 70.0
UNKNOWN_STABILITY_SCORE = 70.0

TREND_SCORES: dict[Trend, float] = {
    Trend.RISING: 85.0,
    Trend.STABLE: 60.0,
    Trend.FALLING: 20.0,
}
UNKNOWN_TREND_SCORE = 60.0


def _clamp(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(100.0, value))


@dataclass(frozen=True)
class ScoreBreakdown:
    """Sub-scores on a 0-100 scale, each clamped before weighting."""

    apy: float
    tvl: float
    trust: float
    utilization: float
    stability: float
    trend: float

    @property
    def total(self) -> float:
        return (
            self.apy * APY_WEIGHT
            + self.tvl * TVL_WEIGHT
            + self.trust * TRUST_WEIGHT
            + self.utilization * UTILIZATION_WEIGHT
            + self.stability * STABILITY_WEIGHT
            + self.trend * TREND_WEIGHT
        )


def score_breakdown(
    opportunity: YieldOpportunity,
    settings: StrategySettings,
    trend: TrendData | None = None,
) -> ScoreBreakdown:
    apy = opportunity.effective_apy
    tvl = max(opportunity.tvl_usd, 1.0)
    trust = settings.protocol_trust.get(opportunity.protocol, DEFAULT_PROTOCOL_TRUST)

    utilization = opportunity.utilization
    if utilization is None:
        utilization_score = UNKNOWN_UTILIZATION_SCORE
    elif utilization < UTILIZATION_KNEE:
        utilization_score = 100.0
    else:
        utilization_score = max(0.0, 100.0 - (utilization - UTILIZATION_KNEE) * 5)

    if trend is None:
        stability_score = UNKNOWN_STABILITY_SCORE
        trend_score = UNKNOWN_TREND_SCORE
    else:
        stability_score = max(0.0, 100.0 - trend.volatility * 2)
        trend_score = TREND_SCORES.get(trend.trend, UNKNOWN_TREND_SCORE)

    return ScoreBreakdown(
        apy=_clamp(min(apy / APY_CEILING, 1.0) * 100),
        tvl=_clamp(min(math.log10(tvl) / TVL_LOG_CEILING, 1.0) * 100),
        trust=_clamp(trust),
        utilization=_clamp(utilization_score),
        stability=_clamp(stability_score),
        trend=_clamp(trend_score),
    )


def score_opportunity(
    opportunity: YieldOpportunity,
    settings: StrategySettings,
    trend: TrendData | None = None,
) -> float:
    """Score an opportunity on a 0-100 scale.

    Pure and deterministic: identical inputs always yield the same score.

    Args:
        opportunity: The (protocol, asset) market to score
        settings: Strategy settings providing the protocol trust table
        trend: Trend and volatility for the market, if history exists

    Returns:
        Weighted sum of APY, TVL, trust, utilization, stability and trend.
    """
    return score_breakdown(opportunity, settings, trend).total


def score_opportunities(
    opportunities: Iterable[YieldOpportunity],
    settings: StrategySettings,
    trends: Mapping[str, TrendData] | None = None,
) -> None:
    """Assign ``score`` on each opportunity in place.

    ``trends`` is keyed by ``"protocol:asset"``.
    """
    trends = trends or {}
    for opp in opportunities:
        opp.score = score_opportunity(
            opp, settings, trends.get(f"{opp.protocol}:{opp.asset}")
        )
