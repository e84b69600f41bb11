"""Portfolio snapshots: live positions plus idle wallet balances."""

from __future__ import annotations

from ..data.onchain import fetch_positions, fetch_wallet_balances
from ..domain import PortfolioSnapshot
from ..state import AppState


async def take_portfolio_snapshot(
    state: AppState, user_id: str, wallet: str
) -> PortfolioSnapshot:
    """Read the wallet from chain and persist its current value.

    Raises:
        PortfolioLoadError: If a balance or position read fails
    """
    apys = {(o.protocol, o.asset): o.supply_apy for o in state.agent.latest_yields}
    positions = await fetch_positions(
        state.adapters,
        wallet,
        state.prices,
        apys,
        min_balance=state.settings.min_position_balance,
    )
    balances = await fetch_wallet_balances(state.chain, wallet, state.prices)

    position_value = sum(p.value_usd for p in positions)
    idle_value = sum(b.value_usd for b in balances)
    snapshot = PortfolioSnapshot(
        user_id=user_id,
        total_value_usd=position_value + idle_value,
        positions=[
            {
                "protocol": p.protocol,
                "asset": p.asset,
                "amount": format(p.formatted.normalize(), "f"),
                "valueUsd": p.value_usd,
                "apy": p.apy,
            }
            for p in positions
        ],
        daily_yield_usd=sum(p.value_usd * p.apy / 100 / 365 for p in positions),
    )
    await state.store.save_portfolio_snapshot(snapshot)
    state.logger.info(
        "Snapshot for %s: $%.2f total, $%.4f/day yield",
        user_id,
        snapshot.total_value_usd,
        snapshot.daily_yield_usd,
    )
    return snapshot
