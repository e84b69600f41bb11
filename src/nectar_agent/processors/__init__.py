from __future__ import annotations

from .evaluator import evaluate_rebalance, hours_since
from .scorer import ScoreBreakdown, score_breakdown, score_opportunities, score_opportunity
from .trends import analyze_trends, classify_trend, trend_map, volatility

__all__ = [
    "ScoreBreakdown",
    "analyze_trends",
    "classify_trend",
    "evaluate_rebalance",
    "hours_since",
    "score_breakdown",
    "score_opportunities",
    "score_opportunity",
    "trend_map",
    "volatility",
]
