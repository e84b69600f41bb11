from __future__ import annotations

from .context import DecisionContext
from .models import ActionType, DecisionPlan, InvestmentAction
from .provider import (
    BaseDecisionProvider,
    ChatCompletionsDecisionProvider,
    DecisionProviderError,
)
from .validator import MAX_PLAN_ACTIONS, parse_percent, validate_plan

__all__ = [
    "ActionType",
    "BaseDecisionProvider",
    "ChatCompletionsDecisionProvider",
    "DecisionContext",
    "DecisionPlan",
    "DecisionProviderError",
    "InvestmentAction",
    "MAX_PLAN_ACTIONS",
    "parse_percent",
    "validate_plan",
]
