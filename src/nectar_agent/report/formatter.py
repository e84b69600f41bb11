"""Rich console rendering for cycle reports and yield tables."""

from __future__ import annotations

from typing import Sequence

from rich.columns import Columns
from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..domain import YieldOpportunity
from ..execution import ActionStatus, CycleReport

_STATUS_STYLES = {
    ActionStatus.SUCCESS: "green",
    ActionStatus.PARTIAL: "yellow",
    ActionStatus.FAILED: "red",
    ActionStatus.SKIPPED: "dim",
    ActionStatus.HELD: "blue",
}


def _truncate(value: str, head: int = 10, tail: int = 4) -> str:
    if len(value) <= head + tail + 3:
        return value
    return f"{value[:head]}...{value[-tail:]}"


def _fmt_apy(value: float | None) -> str:
    return "-" if value is None else f"{value:.2f}%"


def _fmt_usd(value: float) -> str:
    if value >= 1_000_000:
        return f"${value / 1_000_000:,.1f}M"
    return f"${value:,.0f}"


def build_yields_table(opportunities: Sequence[YieldOpportunity]) -> Table:
    table = Table(expand=True, show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Protocol", style="cyan", no_wrap=True)
    table.add_column("Asset", style="cyan", no_wrap=True)
    table.add_column("Supply APY", justify="right", style="green")
    table.add_column("30d APY", justify="right", style="green")
    table.add_column("TVL", justify="right")
    table.add_column("Score", justify="right", style="yellow")
    for rank, opp in enumerate(opportunities, start=1):
        table.add_row(
            str(rank),
            opp.protocol,
            opp.asset,
            _fmt_apy(opp.supply_apy),
            _fmt_apy(opp.trailing_apy),
            _fmt_usd(opp.tvl_usd),
            f"{opp.score:.1f}",
        )
    return table


def format_yields_table(
    opportunities: Sequence[YieldOpportunity], console: Console | None = None
) -> None:
    """Print the scored yield opportunities, best first."""
    console = console or Console()
    console.print(
        Panel(
            build_yields_table(opportunities),
            title="[bold]BSC Lending Yields[/]",
            border_style="cyan",
        )
    )


def format_cycle_report(report: CycleReport, console: Console | None = None) -> None:
    """Print a two-column summary, the plan and each action's outcome."""
    console = console or Console()

    info_table = Table(show_header=False, box=None, padding=(0, 1))
    info_table.add_column("Key", style="dim")
    info_table.add_column("Value", style="cyan")
    info_table.add_row("User", report.user_id)
    info_table.add_row("Wallet", _truncate(report.wallet_address))
    info_table.add_row("Mode", "dry run" if report.dry_run else "live")
    info_panel = Panel(info_table, title="[bold]Agent[/]", border_style="blue")

    summary_table = Table(show_header=False, box=None, padding=(0, 1))
    summary_table.add_column("Key", style="dim")
    summary_table.add_column("Value", style="green")
    summary_table.add_row("Actions", str(len(report.plan.actions)))
    for status in ActionStatus:
        count = report.count(status)
        if count:
            summary_table.add_row(status.value.capitalize(), str(count))
    elapsed = (report.finished_at - report.started_at).total_seconds()
    summary_table.add_row("Duration", f"{elapsed:.1f}s")
    summary_panel = Panel(summary_table, title="[bold]Summary[/]", border_style="green")

    top_row = Columns([info_panel, summary_panel], equal=True, expand=True)

    plan_table = Table(expand=True, show_lines=False)
    plan_table.add_column("#", justify="right", style="dim")
    plan_table.add_column("Action", style="cyan")
    plan_table.add_column("Status", justify="center")
    plan_table.add_column("Detail")
    plan_table.add_column("Tx", style="dim")
    for index, action in enumerate(report.plan.actions, start=1):
        result = report.results[index - 1] if index <= len(report.results) else None
        if result is None:
            status, detail, txs = "[dim]planned[/]", action.reason, ""
        else:
            style = _STATUS_STYLES[result.status]
            status = f"[{style}]{result.status.value}[/]"
            detail = result.error or result.summary
            txs = "\n".join(
                f"{step}: {_truncate(h)}" for step, h in result.tx_hashes.items()
            )
        plan_table.add_row(
            str(index), escape(action.describe()), status, escape(detail), txs
        )
    plan_panel = Panel(plan_table, title="[bold]Plan[/]", border_style="cyan")

    reasoning_panel = Panel(
        Text(report.plan.reasoning, style="dim", overflow="fold"),
        title="[bold]Reasoning[/]",
        border_style="dim",
    )

    console.print()
    console.print(
        Panel(
            Group(top_row, "", plan_panel, "", reasoning_panel),
            title="[bold white]Nectar Agent Rebalance[/]",
            border_style="white",
            padding=(1, 2),
        )
    )
    console.print()
