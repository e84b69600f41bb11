"""Wallet and position loading for one user."""

from __future__ import annotations

import asyncio

from ..data.onchain import fetch_positions, fetch_wallet_balances
from ..domain import PortfolioPosition
from ..state import AppState
from .context import AgentWalletNotFoundError, CycleContext


async def _reconcile_positions(
    state: AppState, user_id: str, positions: list[PortfolioPosition]
) -> None:
    """Make stored positions match what the chain reports."""
    live = {(p.protocol, p.asset): p for p in positions}
    for record in await state.store.get_positions(user_id):
        if (record.protocol, record.asset) not in live:
            state.logger.info(
                "Removing stale stored position %s %s for %s",
                record.protocol,
                record.asset,
                user_id,
            )
            await state.store.delete_position(user_id, record.protocol, record.asset)
    for position in live.values():
        await state.store.upsert_position(
            user_id,
            position.protocol,
            position.asset,
            format(position.formatted.normalize(), "f"),
            position.apy,
        )


async def load_portfolio(ctx: CycleContext) -> None:
    """Resolve the wallet and strategy, then read balances and positions.

    Raises:
        AgentWalletNotFoundError: If the user has no agent wallet
        PortfolioLoadError: If any on-chain read fails
    """
    state = ctx.state
    log = state.logger
    s = state.settings

    wallet = await state.store.get_user_wallet(ctx.user_id)
    if wallet is None:
        raise AgentWalletNotFoundError(ctx.user_id)
    ctx.wallet = wallet
    ctx.strategy = s.strategy_defaults.merged(
        await state.store.get_user_settings(ctx.user_id)
    )

    apys = {(o.protocol, o.asset): o.supply_apy for o in state.agent.latest_yields}
    log.debug("Reading balances and positions for %s", wallet.address)
    ctx.balances, ctx.positions = await asyncio.gather(
        fetch_wallet_balances(state.chain, wallet.address, state.prices),
        fetch_positions(
            state.adapters,
            wallet.address,
            state.prices,
            apys,
            min_balance=s.min_position_balance,
        ),
    )
    log.info(
        "Loaded portfolio for %s: %d idle balance(s), %d position(s)",
        ctx.user_id,
        sum(1 for b in ctx.balances if b.raw_balance > 0),
        len(ctx.positions),
    )
    state.tasks.spawn(
        f"reconcile_positions:{ctx.user_id}",
        _reconcile_positions(state, ctx.user_id, ctx.positions),
    )
