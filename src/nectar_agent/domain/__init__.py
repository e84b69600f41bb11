"""Domain models for the rebalancing agent."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from ..units import format_units


class Trend(str, Enum):
    RISING = "rising"
    STABLE = "stable"
    FALLING = "falling"


@dataclass
class YieldOpportunity:
    """A (protocol, asset) pair where funds can be supplied for yield.

    ``trailing_apy`` is the smoothed multi-day figure from market data and is
    preferred over the instantaneous ``supply_apy`` wherever both exist.
    """

    protocol: str
    asset: str
    asset_address: str
    supply_apy: float
    tvl_usd: float = 0.0
    trailing_apy: float | None = None
    utilization: float | None = None
    score: float = 0.0

    @property
    def effective_apy(self) -> float:
        return self.trailing_apy if self.trailing_apy is not None else self.supply_apy

    def to_payload(self) -> dict[str, Any]:
        return {
            "protocol": self.protocol,
            "asset": self.asset,
            "supplyApy": round(self.supply_apy, 4),
            "apy7dAvg": (
                round(self.trailing_apy, 4) if self.trailing_apy is not None else None
            ),
            "tvl": round(self.tvl_usd, 2),
            "utilizationRate": self.utilization,
            "score": round(self.score, 2),
        }


@dataclass(frozen=True)
class TokenBalance:
    """Idle wallet balance for one token (native BNB included)."""

    symbol: str
    address: str
    raw_balance: int
    decimals: int
    value_usd: float = 0.0

    @property
    def formatted(self) -> Decimal:
        return format_units(self.raw_balance, self.decimals)


@dataclass(frozen=True)
class PortfolioPosition:
    """An on-chain supplied balance in one protocol for one asset."""

    protocol: str
    asset: str
    raw_balance: int
    decimals: int
    apy: float = 0.0
    value_usd: float = 0.0

    @property
    def formatted(self) -> Decimal:
        return format_units(self.raw_balance, self.decimals)


@dataclass(frozen=True)
class RateSample:
    """A persisted yield observation used for trend history."""

    protocol: str
    asset: str
    apy: float
    recorded_at: datetime


@dataclass(frozen=True)
class TrendData:
    trend: Trend
    volatility: float


@dataclass(frozen=True)
class ApyTrend:
    protocol: str
    asset: str
    current_apy: float
    avg_apy: float
    min_apy: float
    max_apy: float
    trend: Trend
    volatility: float

    @property
    def key(self) -> str:
        return f"{self.protocol}:{self.asset}"

    @property
    def trend_data(self) -> TrendData:
        return TrendData(trend=self.trend, volatility=self.volatility)


@dataclass(frozen=True)
class RebalanceAction:
    """A deterministic move proposed by the rule evaluator."""

    asset: str
    from_protocol: str
    to_protocol: str
    amount: int
    reason: str
    old_apy: float
    new_apy: float


@dataclass(frozen=True)
class AgentWallet:
    """The custodial wallet the agent operates on behalf of a user."""

    user_id: str
    address: str
    wallet_id: str | None = None


@dataclass
class TransactionRecord:
    user_id: str
    action_type: str
    asset: str
    protocol: str
    amount: str
    tx_hash: str
    status: str = "confirmed"
    from_protocol: str | None = None
    ai_reasoning: str | None = None
    created_at: datetime | None = None


@dataclass
class PositionRecord:
    """A stored position row; the chain stays the source of truth."""

    user_id: str
    protocol: str
    asset: str
    amount: str
    apy: float = 0.0
    opened_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class PortfolioSnapshot:
    user_id: str
    total_value_usd: float
    positions: list[dict[str, Any]] = field(default_factory=list)
    daily_yield_usd: float = 0.0
    created_at: datetime | None = None


__all__ = [
    "AgentWallet",
    "ApyTrend",
    "PortfolioPosition",
    "PortfolioSnapshot",
    "PositionRecord",
    "RateSample",
    "RebalanceAction",
    "TokenBalance",
    "TransactionRecord",
    "Trend",
    "TrendData",
    "YieldOpportunity",
]
