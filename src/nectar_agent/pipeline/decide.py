"""Plan selection: the AI provider or the deterministic rule engine."""

from __future__ import annotations

from datetime import datetime, timezone

from ..decision import (
    ActionType,
    DecisionPlan,
    DecisionProviderError,
    InvestmentAction,
    validate_plan,
)
from ..events import AI_DECISION
from ..processors import evaluate_rebalance, hours_since
from ..settings import Strategy
from .context import CycleContext


def rules_plan(ctx: CycleContext) -> DecisionPlan:
    """Turn rule-engine moves into full-position rebalance actions."""
    state = ctx.state
    strategy = ctx.strategy_required
    last = state.agent.last_rebalance_time.get(ctx.user_id)
    now = datetime.now(timezone.utc)

    moves = evaluate_rebalance(
        ctx.positions_required, state.agent.latest_yields, strategy, last, now
    )
    if not moves:
        elapsed = hours_since(last, now)
        if elapsed < strategy.rebalance_cooldown_hours:
            reason = (
                f"Rebalance cooldown active ({elapsed:.1f}h of "
                f"{strategy.rebalance_cooldown_hours:g}h elapsed)"
            )
        else:
            reason = (
                f"No position can gain more than "
                f"{strategy.apy_threshold:g}% APY by moving"
            )
        return DecisionPlan(actions=[InvestmentAction.hold(reason)], reasoning=reason)

    actions = [
        InvestmentAction(
            type=ActionType.REBALANCE,
            asset=m.asset,
            protocol=m.to_protocol,
            from_protocol=m.from_protocol,
            amount_percent=100,
            reason=m.reason,
        )
        for m in moves
    ]
    return DecisionPlan(
        actions=actions,
        reasoning=f"Rule engine proposed {len(actions)} rebalance(s)",
    )


async def ai_plan(ctx: CycleContext) -> DecisionPlan:
    """Ask the provider for a plan and validate whatever comes back.

    Raises:
        DecisionProviderError: If no provider is configured or it is unreachable
    """
    provider = ctx.state.provider
    if provider is None:
        raise DecisionProviderError(
            "No decision provider configured; set decision_api_key or use the 'rules' strategy"
        )
    raw = await provider.request_plan(ctx.decision_context_required)
    return validate_plan(raw)


async def decide(ctx: CycleContext) -> None:
    state = ctx.state
    log = state.logger
    strategy = state.settings.strategy

    if strategy is Strategy.RULES:
        plan = rules_plan(ctx)
    else:
        plan = await ai_plan(ctx)
    ctx.plan = plan

    state.events.emit(
        AI_DECISION,
        {"strategy": strategy.value, **plan.to_payload()},
        user_id=ctx.user_id,
    )
    log.info(
        "Plan for %s (%s): %s",
        ctx.user_id,
        strategy.value,
        "; ".join(a.describe() for a in plan.actions),
    )
    log.debug("Plan reasoning: %s", plan.reasoning)
