from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..domain import ApyTrend, PortfolioPosition, TokenBalance, YieldOpportunity


@dataclass(frozen=True)
class DecisionContext:
    """Everything the decision provider is shown for one cycle."""

    wallet_balances: list[TokenBalance]
    positions: list[PortfolioPosition]
    opportunities: list[YieldOpportunity]
    risk_level: str
    apy_trends: list[ApyTrend] = field(default_factory=list)
    recent_actions: list[str] = field(default_factory=list)
    # "protocol:asset" -> hours since the position was opened
    position_ages: dict[str, float] = field(default_factory=dict)
    estimated_gas_cost_usd: float | None = None
    total_portfolio_value: float | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "walletBalances": [
                {
                    "symbol": b.symbol,
                    "amount": format(b.formatted.normalize(), "f"),
                    "valueUsd": round(b.value_usd, 2),
                }
                for b in self.wallet_balances
            ],
            "currentPositions": [
                {
                    "asset": p.asset,
                    "protocol": p.protocol,
                    "apy": round(p.apy, 4),
                    "value": round(p.value_usd, 2),
                    "hoursHeld": self.position_ages.get(f"{p.protocol}:{p.asset}"),
                }
                for p in self.positions
            ],
            "opportunities": [o.to_payload() for o in self.opportunities],
            "riskLevel": self.risk_level,
        }
        if self.apy_trends:
            payload["apyTrends"] = [
                {
                    "protocol": t.protocol,
                    "asset": t.asset,
                    "currentApy": round(t.current_apy, 4),
                    "avgApy24h": round(t.avg_apy, 4),
                    "trend": t.trend.value,
                    "volatility": round(t.volatility, 2),
                }
                for t in self.apy_trends
            ]
        if self.recent_actions:
            payload["recentActions"] = list(self.recent_actions)
        if self.estimated_gas_cost_usd is not None:
            payload["estimatedGasCostUsd"] = self.estimated_gas_cost_usd
        if self.total_portfolio_value is not None:
            payload["totalPortfolioValue"] = round(self.total_portfolio_value, 2)
        return payload
