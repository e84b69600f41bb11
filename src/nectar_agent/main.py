"""CLI entrypoint for the Nectar rebalancing agent."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Annotated, Any

import typer
from eth_account import Account

from .domain import AgentWallet
from .logger import setup_logging
from .settings import AgentSettings, Strategy
from .state import AppState
from .store import InMemoryPortfolioStore

DEFAULT_USER_ID = "local"

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    add_help_option=True,
    pretty_exceptions_enable=True,
    pretty_exceptions_short=True,
    pretty_exceptions_show_locals=False,
    rich_markup_mode="rich",
    help="Autonomous lending rebalancer for Venus, Aave and Lista on BNB Chain.",
)

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to a TOML config file (can include [nectar_agent] table).",
    ),
]
LogLevelOption = Annotated[
    str | None,
    typer.Option(
        "--log-level",
        help="Override logging verbosity (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL).",
    ),
]
ShowConfigOption = Annotated[
    bool,
    typer.Option(
        "--show-config",
        help="Print effective config (with secrets redacted) and exit.",
    ),
]


def _build_logger() -> logging.Logger:
    """Build a logger instance."""
    return logging.getLogger("nectar_agent")


def _load_settings(
    config_path: Path | None, init_kwargs: dict[str, Any], show_config: bool
) -> AgentSettings:
    if config_path:
        os.environ["NECTAR_AGENT_CONFIG"] = str(config_path)

    settings = AgentSettings(**init_kwargs)
    setup_logging(settings.log_level)

    if show_config:
        typer.echo(json.dumps(settings.as_safe_dict(), indent=2))
        raise typer.Exit(code=0)
    return settings


def _wallet_address(settings: AgentSettings) -> str:
    if settings.wallet_address:
        return settings.wallet_address
    if settings.private_key is not None:
        return Account.from_key(settings.private_key_required).address
    raise typer.BadParameter(
        "wallet_address or private_key must be configured.",
        param_hint=["NECTAR_AGENT_WALLET_ADDRESS", "NECTAR_AGENT_PRIVATE_KEY"],
    )


def _build_state(settings: AgentSettings) -> AppState:
    """Wire an app state backed by the in-process store with one agent user."""
    store = InMemoryPortfolioStore()
    store.add_user(
        AgentWallet(
            user_id=settings.user_id or DEFAULT_USER_ID,
            address=_wallet_address(settings),
        )
    )
    return AppState.build(settings, _build_logger(), store=store)


def _check_live_mode(settings: AgentSettings) -> None:
    if settings.dry_run:
        return
    if settings.private_key is None:
        raise typer.BadParameter(
            "private_key is required when running with --execute.",
            param_hint=["NECTAR_AGENT_PRIVATE_KEY"],
        )
    if settings.strategy is Strategy.AI and settings.decision_api_key is None:
        raise typer.BadParameter(
            "decision_api_key is required for the 'ai' strategy.",
            param_hint=["NECTAR_AGENT_DECISION_API_KEY", "--strategy rules"],
        )


@app.command()
def rebalance(
    user_id: Annotated[
        str | None,
        typer.Option("--user", "-u", help="Agent user to rebalance."),
    ] = None,
    dry_run: Annotated[
        bool | None,
        typer.Option(
            "--dry-run/--execute",
            help="Plan only, or sign and send transactions.",
        ),
    ] = None,
    strategy: Annotated[
        Strategy | None,
        typer.Option("--strategy", "-s", help="Decision strategy (ai or rules)."),
    ] = None,
    rpc_urls: Annotated[
        str | None,
        typer.Option("--rpc-urls", help="Comma-separated BSC RPC endpoints."),
    ] = None,
    config_path: ConfigOption = None,
    log_level: LogLevelOption = None,
    show_config: ShowConfigOption = False,
):
    """Run a single rebalance cycle for one agent wallet."""
    init_kwargs: dict[str, Any] = {}
    if user_id is not None:
        init_kwargs["user_id"] = user_id
    if dry_run is not None:
        init_kwargs["dry_run"] = dry_run
    if strategy is not None:
        init_kwargs["strategy"] = strategy
    if rpc_urls is not None:
        init_kwargs["rpc_urls"] = rpc_urls
    if log_level is not None:
        init_kwargs["log_level"] = log_level.upper()

    settings = _load_settings(config_path, init_kwargs, show_config)
    _check_live_mode(settings)
    state = _build_state(settings)

    from .pipeline.run import run_rebalance_cycle
    from .report import format_cycle_report

    async def _run() -> None:
        try:
            report = await run_rebalance_cycle(
                state, settings.user_id or DEFAULT_USER_ID
            )
        finally:
            await state.aclose()
        format_cycle_report(report)

    asyncio.run(_run())


@app.command()
def yields(
    limit: Annotated[
        int, typer.Option("--limit", "-n", help="Number of opportunities to show.")
    ] = 15,
    config_path: ConfigOption = None,
    log_level: LogLevelOption = None,
):
    """Show scored lending opportunities across the supported protocols."""
    init_kwargs: dict[str, Any] = {}
    if log_level is not None:
        init_kwargs["log_level"] = log_level.upper()
    settings = _load_settings(config_path, init_kwargs, show_config=False)
    state = AppState.build(settings, _build_logger())

    from .pipeline.rates import refresh_yields
    from .report import format_yields_table

    async def _run() -> None:
        try:
            opportunities = await refresh_yields(state)
        finally:
            await state.aclose()
        format_yields_table(opportunities[:limit])

    asyncio.run(_run())


@app.command("run")
def run_agent(
    dry_run: Annotated[
        bool | None,
        typer.Option(
            "--dry-run/--execute",
            help="Plan only, or sign and send transactions.",
        ),
    ] = None,
    interval: Annotated[
        float | None,
        typer.Option("--interval", help="Minutes between rebalance ticks."),
    ] = None,
    config_path: ConfigOption = None,
    log_level: LogLevelOption = None,
    show_config: ShowConfigOption = False,
):
    """Run the agent loop until interrupted."""
    init_kwargs: dict[str, Any] = {}
    if dry_run is not None:
        init_kwargs["dry_run"] = dry_run
    if interval is not None:
        init_kwargs["rebalance_interval_minutes"] = interval
    if log_level is not None:
        init_kwargs["log_level"] = log_level.upper()

    settings = _load_settings(config_path, init_kwargs, show_config)
    _check_live_mode(settings)
    state = _build_state(settings)

    from .scheduler import AgentScheduler

    scheduler = AgentScheduler(state)

    async def _run() -> None:
        try:
            await scheduler.run_forever()
        finally:
            await state.aclose()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        state.logger.info("Interrupted, agent stopped")


def run() -> None:
    """Entrypoint used by the console script."""
    app()


if __name__ == "__main__":
    run()
