"""High-level pipeline orchestration."""

from __future__ import annotations

from ..events import REBALANCE_STARTED
from ..execution import CycleReport
from ..state import AppState
from .assemble import assemble_context
from .context import CycleContext
from .decide import decide
from .execute import execute_plan
from .portfolio import load_portfolio
from .rates import refresh_yields
from .report import build_report


async def run_rebalance_cycle(
    state: AppState, user_id: str, dry_run: bool | None = None
) -> CycleReport:
    """Execute one rebalance cycle for ``user_id``.

    This is a thin orchestrator that sequences the pipeline steps:
    1. Portfolio load (fatal on read failure)
    2. Decision context assembly
    3. Decision (AI plan or rule engine)
    4. Execution (skipped on dry run)
    5. Report

    Args:
        state: Application state containing settings and collaborators
        user_id: The user whose agent wallet is rebalanced
        dry_run: Overrides ``settings.dry_run`` when given

    Returns:
        The cycle report
    """
    dry_run = state.settings.dry_run if dry_run is None else dry_run
    log = state.logger

    log.info("Starting rebalance", extra={"user_id": user_id, "dry_run": dry_run})
    state.events.emit(REBALANCE_STARTED, {"dryRun": dry_run}, user_id=user_id)

    if not state.prices.as_dict():
        await state.prices.refresh(state.market)
    if not state.agent.latest_yields:
        await refresh_yields(state)

    ctx = CycleContext(state=state, user_id=user_id, dry_run=dry_run)
    await load_portfolio(ctx)
    await assemble_context(ctx)
    await decide(ctx)
    await execute_plan(ctx)
    await build_report(ctx)

    log.info("Rebalance completed", extra={"user_id": user_id})
    return ctx.report_required
