from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from nectar_agent.domain import RateSample, Trend
from nectar_agent.processors import analyze_trends, classify_trend, trend_map, volatility

START = datetime(2025, 1, 1, tzinfo=timezone.utc)


def samples(rates, protocol="venus", asset="USDT"):
    return [
        RateSample(protocol, asset, rate, START + timedelta(hours=i))
        for i, rate in enumerate(rates)
    ]


def test_increasing_rates_are_rising():
    assert classify_trend([2.0, 2.5, 3.0, 3.5, 4.0, 4.5]) is Trend.RISING


def test_decreasing_rates_are_falling():
    assert classify_trend([6.0, 5.0, 4.0, 3.0, 2.0, 1.0]) is Trend.FALLING


def test_constant_rates_are_stable():
    assert classify_trend([3.0, 3.0, 3.0, 3.0]) is Trend.STABLE


def test_small_moves_stay_stable():
    assert classify_trend([3.0, 3.1, 3.2]) is Trend.STABLE


def test_volatility_of_constant_series_is_zero():
    assert volatility([5.0, 5.0, 5.0]) == 0.0


def test_volatility_with_non_positive_mean_is_zero():
    assert volatility([0.0, 0.0]) == 0.0


def test_volatility_is_coefficient_of_variation():
    assert volatility([4.0, 6.0]) == pytest.approx(20.0)


def test_single_sample_groups_are_dropped():
    trends = analyze_trends(samples([4.0]) + samples([1.0, 2.0], protocol="aave"))

    assert [(t.protocol, t.asset) for t in trends] == [("aave", "USDT")]


def test_samples_are_ordered_by_time_before_analysis():
    ordered = samples([1.0, 2.0, 3.0, 4.0, 5.0, 6.0])

    [trend] = analyze_trends(list(reversed(ordered)))

    assert trend.trend is Trend.RISING
    assert trend.current_apy == 6.0
    assert trend.min_apy == 1.0
    assert trend.max_apy == 6.0
    assert trend.avg_apy == pytest.approx(3.5)


def test_trend_map_is_keyed_by_protocol_and_asset():
    trends = analyze_trends(samples([5.0, 4.0, 3.0, 2.0], asset="USDC"))

    mapping = trend_map(trends)

    assert set(mapping) == {"venus:USDC"}
    assert mapping["venus:USDC"].trend is Trend.FALLING
