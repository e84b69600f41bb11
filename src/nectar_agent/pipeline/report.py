"""Cycle report generation."""

from __future__ import annotations

from datetime import datetime, timezone

from ..events import REBALANCE_COMPLETED
from ..execution import ActionStatus, CycleReport
from .context import CycleContext


async def build_report(ctx: CycleContext) -> None:
    """Summarise the cycle and announce it.

    Sets the report in the context.
    """
    state = ctx.state
    log = state.logger

    report = CycleReport(
        user_id=ctx.user_id,
        wallet_address=ctx.wallet_required.address,
        plan=ctx.plan_required,
        results=list(ctx.results),
        dry_run=ctx.dry_run,
        started_at=ctx.started_at,
        finished_at=datetime.now(timezone.utc),
    )
    ctx.report = report

    counts = {s.value: report.count(s) for s in ActionStatus}
    state.events.emit(
        REBALANCE_COMPLETED,
        {"dryRun": report.dry_run, "actions": len(report.plan.actions), **counts},
        user_id=ctx.user_id,
    )
    log.info(
        "Cycle for %s finished: %s",
        ctx.user_id,
        ", ".join(f"{n} {k}" for k, n in counts.items() if n) or "nothing executed",
    )
