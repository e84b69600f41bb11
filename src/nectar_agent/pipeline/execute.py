"""Plan execution and post-cycle bookkeeping."""

from __future__ import annotations

from datetime import datetime, timezone

from ..execution import ActionExecutor, ActionStatus, ExecutionResult
from .context import CycleContext
from .snapshot import take_portfolio_snapshot

# A transaction landed for these, so the move counts against the cooldown.
_MOVED = (ActionStatus.SUCCESS, ActionStatus.PARTIAL)


def moved_funds(results: list[ExecutionResult]) -> bool:
    return any(not r.action.is_hold and r.status in _MOVED for r in results)


async def execute_plan(ctx: CycleContext) -> None:
    """Run the plan unless this is a dry run.

    The cooldown clock only restarts when an action moved funds; hold-only
    or fully skipped cycles leave ``last_rebalance_time`` untouched.

    Raises:
        RuntimeError: If no transaction signer is configured
    """
    state = ctx.state
    log = state.logger
    plan = ctx.plan_required
    wallet = ctx.wallet_required

    if ctx.dry_run:
        log.info("Dry run: not executing %d planned action(s)", len(plan.actions))
        ctx.results = []
        return

    if state.sender_factory is None:
        raise RuntimeError(
            "No transaction signer configured; set private_key or run with --dry-run"
        )
    send = state.sender_factory(wallet)

    executor = ActionExecutor(
        user_id=ctx.user_id,
        wallet=wallet.address,
        send=send,
        chain=state.chain,
        adapters=state.adapters,
        swapper=state.swapper,
        prices=state.prices,
        settings=state.settings,
        events=state.events,
        store=state.store,
        tasks=state.tasks,
        apys={(o.protocol, o.asset): o.supply_apy for o in state.agent.latest_yields},
        reasoning=plan.reasoning,
    )
    ctx.results = await executor.execute(plan.actions)

    if moved_funds(ctx.results):
        state.agent.last_rebalance_time[ctx.user_id] = datetime.now(timezone.utc)
    else:
        log.debug("No funds moved; cooldown clock unchanged for %s", ctx.user_id)

    if any(r.success for r in ctx.results):
        state.tasks.spawn(
            f"portfolio_snapshot:{ctx.user_id}",
            take_portfolio_snapshot(state, ctx.user_id, wallet.address),
        )
