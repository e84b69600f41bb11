from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ActionType(str, Enum):
    SUPPLY = "supply"
    WITHDRAW = "withdraw"
    REBALANCE = "rebalance"
    HOLD = "hold"
    SWAP_AND_SUPPLY = "swap_and_supply"


@dataclass(frozen=True)
class InvestmentAction:
    """A validated plan step.

    ``amount_percent`` is a whole percentage of the relevant balance: idle
    wallet balance for supply and swap_and_supply, the source position for
    rebalance and withdraw.
    """

    type: ActionType
    asset: str = ""
    protocol: str = ""
    amount_percent: int = 0
    reason: str = ""
    from_protocol: str | None = None
    from_asset: str | None = None

    @classmethod
    def hold(cls, reason: str) -> InvestmentAction:
        return cls(type=ActionType.HOLD, reason=reason)

    @property
    def is_hold(self) -> bool:
        return self.type is ActionType.HOLD

    def describe(self) -> str:
        if self.type is ActionType.HOLD:
            return f"hold ({self.reason})" if self.reason else "hold"
        if self.type is ActionType.REBALANCE:
            return (
                f"rebalance {self.amount_percent}% {self.asset} "
                f"{self.from_protocol or '?'} -> {self.protocol}"
            )
        if self.type is ActionType.SWAP_AND_SUPPLY:
            return (
                f"swap {self.amount_percent}% {self.from_asset or '?'} -> "
                f"{self.asset} and supply to {self.protocol}"
            )
        return f"{self.type.value} {self.amount_percent}% {self.asset} on {self.protocol}"

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type.value,
            "asset": self.asset,
            "protocol": self.protocol,
            "amountPercent": self.amount_percent,
            "reason": self.reason,
        }
        if self.from_protocol:
            payload["fromProtocol"] = self.from_protocol
        if self.from_asset:
            payload["fromAsset"] = self.from_asset
        return payload


@dataclass(frozen=True)
class DecisionPlan:
    actions: list[InvestmentAction] = field(default_factory=list)
    reasoning: str = ""

    @property
    def is_hold_only(self) -> bool:
        return all(a.is_hold for a in self.actions)

    def to_payload(self) -> dict[str, Any]:
        return {
            "actions": [a.to_payload() for a in self.actions],
            "reasoning": self.reasoning,
        }
