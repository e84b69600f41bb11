from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from nectar_agent.adapters.protocol_adapters import Protocol, TxRequest
from nectar_agent.constants import BSC_ASSETS
from nectar_agent.data.defillama import PriceBook
from nectar_agent.decision import ActionType, InvestmentAction
from nectar_agent.events import (
    ACTION_COMPLETED,
    ACTION_FAILED,
    ACTION_SKIPPED,
    AUTO_WRAP,
    EventLog,
)
from nectar_agent.execution import ActionExecutor, ActionStatus
from nectar_agent.settings import AgentSettings
from nectar_agent.store import InMemoryPortfolioStore
from nectar_agent.tasks import BackgroundTasks

WALLET = "0x1111111111111111111111111111111111111111"
E18 = 10**18


class FakeChain:
    """Wallet balances keyed by symbol; reads resolve token addresses back to symbols."""

    def __init__(self, balances: dict[str, int] | None = None, native: int = 0):
        self.balances = dict(balances or {})
        self.native = native
        self.encode = MagicMock(return_value="0xcalldata")
        self._symbols = {
            info["address"].lower(): symbol for symbol, info in BSC_ASSETS.items()
        }

    async def read(self, address, abi, fn_name, *args):
        assert fn_name == "balanceOf"
        return self.balances.get(self._symbols[address.lower()], 0)

    async def native_balance(self, address):
        return self.native


class FakeAdapter:
    def __init__(self, name: str, assets: list[str], positions=None):
        self.adapter_name = name
        self.supported_assets = assets
        self.positions: dict[str, int] = dict(positions or {})
        self.supply = AsyncMock(return_value=f"0x{name}-supply")
        self.withdraw = AsyncMock(return_value=f"0x{name}-withdraw")

    def supports(self, asset: str) -> bool:
        return asset in self.supported_assets

    async def get_balance(self, asset: str, wallet: str) -> int:
        return self.positions.get(asset, 0)


def make_executor(chain, adapters, swapper=None, send=None):
    tasks = BackgroundTasks()
    store = InMemoryPortfolioStore()
    events = EventLog(store=store, tasks=tasks)
    return ActionExecutor(
        user_id="u1",
        wallet=WALLET,
        send=send or AsyncMock(return_value="0xsent"),
        chain=chain,
        adapters=adapters,
        swapper=swapper or MagicMock(),
        prices=PriceBook({"USDT": 1.0, "USDC": 1.0, "WBNB": 600.0}),
        settings=AgentSettings(dry_run=False),
        events=events,
        store=store,
        tasks=tasks,
    )


def supply(asset: str, protocol: str, pct: int = 100) -> InvestmentAction:
    return InvestmentAction(
        type=ActionType.SUPPLY, asset=asset, protocol=protocol, amount_percent=pct
    )


@pytest.mark.asyncio
async def test_supply_uses_percent_of_live_balance():
    chain = FakeChain({"USDT": 100 * E18})
    venus = FakeAdapter("venus", ["USDT"])
    executor = make_executor(chain, {Protocol.VENUS: venus})

    [result] = await executor.execute([supply("USDT", "venus", 50)])
    await executor.tasks.drain()

    assert result.status is ActionStatus.SUCCESS
    assert result.tx_hashes == {"supply": "0xvenus-supply"}
    venus.supply.assert_awaited_once()
    assert venus.supply.await_args.args[:2] == ("USDT", 50 * E18)
    [record] = executor.store.transactions
    assert record.tx_hash == "0xvenus-supply"
    assert record.amount == "50"


@pytest.mark.asyncio
async def test_supply_skips_dust_without_touching_the_adapter():
    chain = FakeChain({"USDT": E18 // 2})
    venus = FakeAdapter("venus", ["USDT"])
    executor = make_executor(chain, {Protocol.VENUS: venus})

    [result] = await executor.execute([supply("USDT", "venus")])

    assert result.status is ActionStatus.SKIPPED
    assert "dust" in result.error
    venus.supply.assert_not_awaited()
    assert executor.events.recent(1)[0].event_name == ACTION_SKIPPED


@pytest.mark.asyncio
async def test_supply_with_empty_wallet_is_skipped():
    executor = make_executor(FakeChain(), {Protocol.VENUS: FakeAdapter("venus", ["USDT"])})

    [result] = await executor.execute([supply("USDT", "venus")])

    assert result.status is ActionStatus.SKIPPED
    assert result.error == "No USDT balance in wallet"


@pytest.mark.asyncio
async def test_supply_to_protocol_without_market_is_skipped():
    chain = FakeChain({"USD1": 10 * E18})
    executor = make_executor(chain, {Protocol.VENUS: FakeAdapter("venus", ["USDT"])})

    [result] = await executor.execute([supply("USD1", "venus")])

    assert result.status is ActionStatus.SKIPPED
    assert "no market" in result.error


@pytest.mark.asyncio
async def test_failure_in_one_action_does_not_stop_the_next():
    chain = FakeChain({"USDT": 10 * E18, "USDC": 10 * E18})
    venus = FakeAdapter("venus", ["USDT", "USDC"])
    aave = FakeAdapter("aave", ["USDT", "USDC"])
    aave.supply.side_effect = RuntimeError("execution reverted")
    executor = make_executor(chain, {Protocol.VENUS: venus, Protocol.AAVE: aave})

    results = await executor.execute(
        [supply("USDT", "venus"), supply("USDC", "aave"), supply("USDC", "venus")]
    )
    await executor.tasks.drain()

    assert [r.status for r in results] == [
        ActionStatus.SUCCESS,
        ActionStatus.FAILED,
        ActionStatus.SUCCESS,
    ]
    assert "execution reverted" in results[1].error
    assert results[1].tx_hashes == {}
    failed = [e for e in executor.events.recent() if e.event_name == ACTION_FAILED]
    assert len(failed) == 1


@pytest.mark.asyncio
async def test_hold_produces_held_result():
    executor = make_executor(FakeChain(), {})

    [result] = await executor.execute([InvestmentAction.hold("Nothing to do")])

    assert result.status is ActionStatus.HELD
    assert result.summary == "Nothing to do"
    assert executor.events.recent(1)[0].event_name == ACTION_COMPLETED


@pytest.mark.asyncio
async def test_wbnb_supply_wraps_native_above_gas_reserve():
    chain = FakeChain(native=E18)
    sent: list[TxRequest] = []

    async def send(tx: TxRequest) -> str:
        sent.append(tx)
        chain.balances["WBNB"] = chain.balances.get("WBNB", 0) + tx.value
        return "0xwrap"

    venus = FakeAdapter("venus", ["WBNB"])
    executor = make_executor(chain, {Protocol.VENUS: venus}, send=send)

    [result] = await executor.execute([supply("WBNB", "venus")])
    await executor.tasks.drain()

    reserve = executor.settings.gas_reserve_wei
    assert result.status is ActionStatus.SUCCESS
    assert result.tx_hashes == {"wrap": "0xwrap", "supply": "0xvenus-supply"}
    assert sent[0].value == E18 - reserve
    assert sent[0].to == BSC_ASSETS["WBNB"]["address"]
    assert venus.supply.await_args.args[1] == E18 - reserve
    assert any(e.event_name == AUTO_WRAP for e in executor.events.recent())


@pytest.mark.asyncio
async def test_wbnb_supply_does_not_wrap_within_gas_reserve():
    chain = FakeChain({"WBNB": 2 * E18}, native=10**15)
    send = AsyncMock()
    venus = FakeAdapter("venus", ["WBNB"])
    executor = make_executor(chain, {Protocol.VENUS: venus}, send=send)

    [result] = await executor.execute([supply("WBNB", "venus")])

    assert result.status is ActionStatus.SUCCESS
    assert "wrap" not in result.tx_hashes
    send.assert_not_awaited()


@pytest.mark.asyncio
async def test_swap_and_supply_supplies_only_the_received_delta():
    pre_existing = 5 * E18
    received = 90 * E18
    chain = FakeChain({"USDT": 100 * E18, "USDC": pre_existing})

    async def swap(asset_in, asset_out, amount_in, wallet, send, slippage_bps=100):
        chain.balances[asset_in] -= amount_in
        chain.balances[asset_out] += received
        return "0xswap"

    swapper = MagicMock()
    swapper.swap = AsyncMock(side_effect=swap)
    aave = FakeAdapter("aave", ["USDC"])
    executor = make_executor(chain, {Protocol.AAVE: aave}, swapper=swapper)

    action = InvestmentAction(
        type=ActionType.SWAP_AND_SUPPLY,
        asset="USDC",
        protocol="aave",
        from_asset="USDT",
        amount_percent=100,
    )
    [result] = await executor.execute([action])
    await executor.tasks.drain()

    assert result.status is ActionStatus.SUCCESS
    assert result.tx_hashes == {"swap": "0xswap", "supply": "0xaave-supply"}
    assert aave.supply.await_args.args[1] == received
    assert swapper.swap.await_args.args[2] == 100 * E18


@pytest.mark.asyncio
async def test_swap_without_balance_increase_is_partial():
    chain = FakeChain({"USDT": 100 * E18, "USDC": 0})
    swapper = MagicMock()
    swapper.swap = AsyncMock(return_value="0xswap")
    aave = FakeAdapter("aave", ["USDC"])
    executor = make_executor(chain, {Protocol.AAVE: aave}, swapper=swapper)

    action = InvestmentAction(
        type=ActionType.SWAP_AND_SUPPLY,
        asset="USDC",
        protocol="aave",
        from_asset="USDT",
        amount_percent=100,
    )
    [result] = await executor.execute([action])

    assert result.status is ActionStatus.PARTIAL
    assert result.tx_hashes == {"swap": "0xswap"}
    assert "remains in the agent wallet" in result.error
    aave.supply.assert_not_awaited()


@pytest.mark.asyncio
async def test_rebalance_moves_position_between_protocols():
    chain = FakeChain({"USDT": 0})
    venus = FakeAdapter("venus", ["USDT"], positions={"USDT": 40 * E18})
    aave = FakeAdapter("aave", ["USDT"])

    async def withdraw(asset, amount, wallet, send):
        venus.positions[asset] -= amount
        chain.balances[asset] += amount
        return "0xvenus-withdraw"

    venus.withdraw.side_effect = withdraw
    executor = make_executor(chain, {Protocol.VENUS: venus, Protocol.AAVE: aave})

    action = InvestmentAction(
        type=ActionType.REBALANCE,
        asset="USDT",
        protocol="aave",
        from_protocol="venus",
        amount_percent=100,
    )
    [result] = await executor.execute([action])
    await executor.tasks.drain()

    assert result.status is ActionStatus.SUCCESS
    assert result.tx_hashes == {"withdraw": "0xvenus-withdraw", "supply": "0xaave-supply"}
    assert aave.supply.await_args.args[1] == 40 * E18


@pytest.mark.asyncio
async def test_rebalance_supply_failure_keeps_withdraw_hash():
    chain = FakeChain({"USDT": 40 * E18})
    venus = FakeAdapter("venus", ["USDT"], positions={"USDT": 40 * E18})
    aave = FakeAdapter("aave", ["USDT"])
    aave.supply.side_effect = RuntimeError("insufficient allowance")
    executor = make_executor(chain, {Protocol.VENUS: venus, Protocol.AAVE: aave})

    action = InvestmentAction(
        type=ActionType.REBALANCE,
        asset="USDT",
        protocol="aave",
        from_protocol="venus",
        amount_percent=100,
    )
    [result] = await executor.execute([action])
    await executor.tasks.drain()

    assert result.status is ActionStatus.PARTIAL
    assert result.tx_hashes == {"withdraw": "0xvenus-withdraw"}
    assert "Funds remain in the agent wallet" in result.error
    assert "insufficient allowance" in result.error


@pytest.mark.asyncio
async def test_rebalance_without_position_is_skipped():
    venus = FakeAdapter("venus", ["USDT"], positions={"USDT": 10**15})
    aave = FakeAdapter("aave", ["USDT"])
    executor = make_executor(FakeChain(), {Protocol.VENUS: venus, Protocol.AAVE: aave})

    action = InvestmentAction(
        type=ActionType.REBALANCE,
        asset="USDT",
        protocol="aave",
        from_protocol="venus",
        amount_percent=100,
    )
    [result] = await executor.execute([action])

    assert result.status is ActionStatus.SKIPPED
    venus.withdraw.assert_not_awaited()


@pytest.mark.asyncio
async def test_rebalance_without_source_protocol_is_skipped():
    executor = make_executor(FakeChain(), {Protocol.AAVE: FakeAdapter("aave", ["USDT"])})

    action = InvestmentAction(
        type=ActionType.REBALANCE, asset="USDT", protocol="aave", amount_percent=100
    )
    [result] = await executor.execute([action])

    assert result.status is ActionStatus.SKIPPED


@pytest.mark.asyncio
async def test_withdraw_pulls_percent_of_position():
    venus = FakeAdapter("venus", ["USDT"], positions={"USDT": 20 * E18})
    executor = make_executor(FakeChain(), {Protocol.VENUS: venus})

    action = InvestmentAction(
        type=ActionType.WITHDRAW, asset="USDT", protocol="venus", amount_percent=25
    )
    [result] = await executor.execute([action])
    await executor.tasks.drain()

    assert result.status is ActionStatus.SUCCESS
    assert venus.withdraw.await_args.args[1] == 5 * E18


@pytest.mark.asyncio
async def test_swap_then_failed_supply_keeps_swap_hash():
    chain = FakeChain({"USDT": 100 * E18, "USDC": 0})

    async def swap(asset_in, asset_out, amount_in, wallet, send, slippage_bps=100):
        chain.balances[asset_out] += 99 * E18
        return "0xswap"

    swapper = MagicMock()
    swapper.swap = AsyncMock(side_effect=swap)
    aave = FakeAdapter("aave", ["USDC"])
    aave.supply.side_effect = RuntimeError("execution reverted")
    executor = make_executor(chain, {Protocol.AAVE: aave}, swapper=swapper)

    action = InvestmentAction(
        type=ActionType.SWAP_AND_SUPPLY,
        asset="USDC",
        protocol="aave",
        from_asset="USDT",
        amount_percent=100,
    )
    [result] = await executor.execute([action])

    assert result.status is ActionStatus.PARTIAL
    assert result.tx_hashes == {"swap": "0xswap"}
    assert "supply to aave failed: execution reverted" in result.error
    assert "Swapped USDC remains in the agent wallet" in result.error
    assert executor.events.recent(1)[0].event_name == ACTION_FAILED


@pytest.mark.asyncio
async def test_wrap_then_failed_supply_keeps_wrap_hash():
    chain = FakeChain(native=E18)

    async def send(tx: TxRequest) -> str:
        chain.balances["WBNB"] = chain.balances.get("WBNB", 0) + tx.value
        return "0xwrap"

    venus = FakeAdapter("venus", ["WBNB"])
    venus.supply.side_effect = RuntimeError("market paused")
    executor = make_executor(chain, {Protocol.VENUS: venus}, send=send)

    [result] = await executor.execute([supply("WBNB", "venus")])

    assert result.status is ActionStatus.PARTIAL
    assert result.tx_hashes == {"wrap": "0xwrap"}
    assert "Wrapped BNB but supply of WBNB to venus failed: market paused" in result.error
    assert "WBNB remains in the agent wallet" in result.error
    assert executor.store.transactions == []
