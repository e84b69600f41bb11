from __future__ import annotations

import statistics
from collections import defaultdict
from typing import Iterable

from ..domain import ApyTrend, RateSample, Trend, TrendData

# Minimum APY change (percentage points) between the first and last third
# of the window to call a direction.
TREND_THRESHOLD = 0.3


def classify_trend(rates: list[float]) -> Trend:
    """Compare the mean of the first third of the window with the last third."""
    third = max(1, len(rates) // 3)
    first = statistics.fmean(rates[:third])
    last = statistics.fmean(rates[-third:])
    delta = last - first
    if delta > TREND_THRESHOLD:
        return Trend.RISING
    if delta < -TREND_THRESHOLD:
        return Trend.FALLING
    return Trend.STABLE


def volatility(rates: list[float]) -> float:
    """Coefficient of variation in percent; 0 when the mean is not positive."""
    mean = statistics.fmean(rates)
    if mean <= 0:
        return 0.0
    return statistics.pstdev(rates) / mean * 100


def analyze_trends(samples: Iterable[RateSample]) -> list[ApyTrend]:
    """Summarise rate history per (protocol, asset).

    Samples are ordered chronologically within each group before analysis.
    Groups with fewer than two samples carry no trend and are dropped.
    """
    groups: dict[tuple[str, str], list[RateSample]] = defaultdict(list)
    for sample in samples:
        groups[(sample.protocol, sample.asset)].append(sample)

    trends: list[ApyTrend] = []
    for (protocol, asset), group in groups.items():
        if len(group) < 2:
            continue
        group.sort(key=lambda s: s.recorded_at)
        rates = [s.apy for s in group]
        trends.append(
            ApyTrend(
                protocol=protocol,
                asset=asset,
                current_apy=rates[-1],
                avg_apy=statistics.fmean(rates),
                min_apy=min(rates),
                max_apy=max(rates),
                trend=classify_trend(rates),
                volatility=volatility(rates),
            )
        )
    return trends


def trend_map(trends: Iterable[ApyTrend]) -> dict[str, TrendData]:
    """Index trends by ``"protocol:asset"`` for the scorer."""
    return {t.key: t.trend_data for t in trends}
