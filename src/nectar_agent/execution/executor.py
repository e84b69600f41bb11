"""Turns validated plan actions into protocol calls.

Actions run strictly in plan order and are isolated from each other: a
failure in one becomes its own result and the next action still runs.
Balances are always re-read from the chain right before they are spent.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Awaitable, Callable, Mapping

from web3 import Web3

from ..abi import load_wbnb_abi
from ..adapters.protocol_adapters import BaseProtocolAdapter, Protocol, SendTx, TxRequest
from ..adapters.swap import PancakeSwapRouter
from ..clients.chain import ChainClient
from ..constants import BSC_ASSETS, NATIVE_SYMBOL, WRAPPED_NATIVE_SYMBOL
from ..data.defillama import PriceBook
from ..data.onchain import fetch_position, fetch_token_balance
from ..decision import ActionType, InvestmentAction
from ..domain import TransactionRecord
from ..events import (
    ACTION_COMPLETED,
    ACTION_FAILED,
    ACTION_SKIPPED,
    ACTION_STARTED,
    AUTO_WRAP,
    EventLog,
)
from ..logger import get_logger
from ..settings import AgentSettings
from ..store import BasePortfolioStore
from ..tasks import BackgroundTasks
from ..units import format_units, percent_of, usd_value
from .results import ActionSkipped, ActionStatus, ExecutionResult, PartialExecutionError

logger = get_logger(__name__)

_STATUS_EVENTS = {
    ActionStatus.SUCCESS: ACTION_COMPLETED,
    ActionStatus.HELD: ACTION_COMPLETED,
    ActionStatus.SKIPPED: ACTION_SKIPPED,
    ActionStatus.PARTIAL: ACTION_FAILED,
    ActionStatus.FAILED: ACTION_FAILED,
}


def _fmt(amount: int, asset: str) -> str:
    decimals = BSC_ASSETS[asset]["decimals"] if asset in BSC_ASSETS else 18
    return format(format_units(amount, decimals).normalize(), "f")


class ActionExecutor:
    """Executes plan actions for one agent wallet."""

    def __init__(
        self,
        *,
        user_id: str,
        wallet: str,
        send: SendTx,
        chain: ChainClient,
        adapters: Mapping[Protocol, BaseProtocolAdapter],
        swapper: PancakeSwapRouter,
        prices: PriceBook,
        settings: AgentSettings,
        events: EventLog,
        store: BasePortfolioStore,
        tasks: BackgroundTasks,
        apys: Mapping[tuple[str, str], float] | None = None,
        reasoning: str = "",
    ):
        self.user_id = user_id
        self.wallet = Web3.to_checksum_address(wallet)
        self.send = send
        self.chain = chain
        self.adapters = adapters
        self.swapper = swapper
        self.prices = prices
        self.settings = settings
        self.events = events
        self.store = store
        self.tasks = tasks
        self.apys = dict(apys or {})
        self.reasoning = reasoning
        self._handlers: dict[
            ActionType, Callable[[InvestmentAction], Awaitable[ExecutionResult]]
        ] = {
            ActionType.HOLD: self._hold,
            ActionType.SUPPLY: self._supply,
            ActionType.WITHDRAW: self._withdraw,
            ActionType.REBALANCE: self._rebalance,
            ActionType.SWAP_AND_SUPPLY: self._swap_and_supply,
        }

    async def execute(self, actions: list[InvestmentAction]) -> list[ExecutionResult]:
        """Run ``actions`` sequentially; returns one result per action."""
        results: list[ExecutionResult] = []
        for index, action in enumerate(actions, start=1):
            self._emit(
                ACTION_STARTED,
                {"index": index, "total": len(actions), "action": action.to_payload()},
            )
            logger.info("Executing action %d/%d: %s", index, len(actions), action.describe())
            result = await self.execute_one(action)
            results.append(result)

            self._emit(_STATUS_EVENTS[result.status], result.to_payload())
            if result.status in (ActionStatus.FAILED, ActionStatus.PARTIAL):
                logger.error("Action %s %s: %s", action.describe(), result.status.value, result.error)
            elif result.status is ActionStatus.SKIPPED:
                logger.info("Action %s skipped: %s", action.describe(), result.error)
            else:
                logger.info("Action %s: %s", result.status.value, result.summary)
        return results

    async def execute_one(self, action: InvestmentAction) -> ExecutionResult:
        handler = self._handlers[action.type]
        try:
            return await handler(action)
        except ActionSkipped as e:
            return ExecutionResult(
                action, ActionStatus.SKIPPED, tx_hashes=e.tx_hashes, error=str(e)
            )
        except PartialExecutionError as e:
            return ExecutionResult(
                action, ActionStatus.PARTIAL, tx_hashes=e.tx_hashes, error=str(e)
            )
        except Exception as e:
            return ExecutionResult(
                action, ActionStatus.FAILED, error=f"{type(e).__name__}: {e}"
            )

    async def _hold(self, action: InvestmentAction) -> ExecutionResult:
        return ExecutionResult(action, ActionStatus.HELD, summary=action.reason or "hold")

    async def _supply(self, action: InvestmentAction) -> ExecutionResult:
        asset = action.asset
        adapter = self._destination(action)
        tx_hashes: dict[str, str] = {}

        if asset == WRAPPED_NATIVE_SYMBOL:
            wrap_hash = await self._wrap_native()
            if wrap_hash:
                tx_hashes["wrap"] = wrap_hash

        balance = await fetch_token_balance(self.chain, asset, self.wallet)
        if balance <= 0:
            raise ActionSkipped(f"No {asset} balance in wallet", tx_hashes)
        amount = percent_of(balance, action.amount_percent)
        if amount <= 0:
            raise ActionSkipped(f"{action.amount_percent}% of {asset} balance is zero", tx_hashes)
        self._check_dust(asset, amount, tx_hashes)

        try:
            supply_hash = await adapter.supply(asset, amount, self.wallet, self.send)
        except Exception as e:
            if not tx_hashes:
                raise
            raise PartialExecutionError(
                f"Wrapped BNB but supply of {asset} to {action.protocol} failed: {e}. "
                "WBNB remains in the agent wallet",
                tx_hashes,
            ) from e
        tx_hashes["supply"] = supply_hash
        self._record(action, amount, supply_hash)
        self._sync_position(adapter, asset)
        return ExecutionResult(
            action,
            ActionStatus.SUCCESS,
            tx_hashes=tx_hashes,
            summary=f"Supplied {_fmt(amount, asset)} {asset} to {action.protocol}",
        )

    async def _withdraw(self, action: InvestmentAction) -> ExecutionResult:
        asset = action.asset
        adapter = self._adapter(action.protocol)
        amount = await self._position_amount(adapter, action)

        withdraw_hash = await adapter.withdraw(asset, amount, self.wallet, self.send)
        self._record(action, amount, withdraw_hash)
        self._sync_position(adapter, asset)
        return ExecutionResult(
            action,
            ActionStatus.SUCCESS,
            tx_hashes={"withdraw": withdraw_hash},
            summary=f"Withdrew {_fmt(amount, asset)} {asset} from {action.protocol}",
        )

    async def _rebalance(self, action: InvestmentAction) -> ExecutionResult:
        asset = action.asset
        if not action.from_protocol:
            raise ActionSkipped("Rebalance needs a source protocol")
        if action.from_protocol == action.protocol:
            raise ActionSkipped(f"Rebalance source and destination are both {action.protocol}")
        source = self._adapter(action.from_protocol)
        destination = self._destination(action)
        amount = await self._position_amount(source, action)

        withdraw_hash = await source.withdraw(asset, amount, self.wallet, self.send)
        tx_hashes = {"withdraw": withdraw_hash}
        self._sync_position(source, asset)

        try:
            # Markets may round the withdrawn amount down by a few wei.
            available = await fetch_token_balance(self.chain, asset, self.wallet)
            supply_amount = min(amount, available)
            if supply_amount <= 0:
                raise ValueError(f"no {asset} arrived in the wallet")
            supply_hash = await destination.supply(
                asset, supply_amount, self.wallet, self.send
            )
        except Exception as e:
            raise PartialExecutionError(
                f"Withdrew {_fmt(amount, asset)} {asset} from {action.from_protocol} "
                f"but supply to {action.protocol} failed: {e}. "
                "Funds remain in the agent wallet",
                tx_hashes,
            ) from e
        tx_hashes["supply"] = supply_hash
        self._record(action, supply_amount, supply_hash)
        self._sync_position(destination, asset)
        return ExecutionResult(
            action,
            ActionStatus.SUCCESS,
            tx_hashes=tx_hashes,
            summary=(
                f"Moved {_fmt(supply_amount, asset)} {asset} from "
                f"{action.from_protocol} to {action.protocol}"
            ),
        )

    async def _swap_and_supply(self, action: InvestmentAction) -> ExecutionResult:
        asset = action.asset
        from_asset = action.from_asset
        if not from_asset or from_asset not in BSC_ASSETS:
            raise ActionSkipped(f"Unknown swap source asset {from_asset!r}")
        if asset not in BSC_ASSETS:
            raise ActionSkipped(f"Unknown swap target asset {asset!r}")
        if from_asset == asset:
            raise ActionSkipped(f"Swap source and target are both {asset}")
        destination = self._destination(action)

        source_balance = await fetch_token_balance(self.chain, from_asset, self.wallet)
        if source_balance <= 0:
            raise ActionSkipped(f"No {from_asset} balance in wallet")
        amount_in = percent_of(source_balance, action.amount_percent)
        if amount_in <= 0:
            raise ActionSkipped(f"{action.amount_percent}% of {from_asset} balance is zero")
        self._check_dust(from_asset, amount_in, {})

        before = await fetch_token_balance(self.chain, asset, self.wallet)
        swap_hash = await self.swapper.swap(
            from_asset,
            asset,
            amount_in,
            self.wallet,
            self.send,
            slippage_bps=self.settings.swap_slippage_bps,
        )
        tx_hashes = {"swap": swap_hash}

        try:
            after = await fetch_token_balance(self.chain, asset, self.wallet)
            received = after - before
            if received <= 0:
                raise ValueError(f"wallet {asset} balance did not increase")
            supply_hash = await destination.supply(asset, received, self.wallet, self.send)
        except Exception as e:
            raise PartialExecutionError(
                f"Swapped {_fmt(amount_in, from_asset)} {from_asset} to {asset} "
                f"but supply to {action.protocol} failed: {e}. "
                f"Swapped {asset} remains in the agent wallet",
                tx_hashes,
            ) from e
        tx_hashes["supply"] = supply_hash
        self._record(action, received, supply_hash)
        self._sync_position(destination, asset)
        return ExecutionResult(
            action,
            ActionStatus.SUCCESS,
            tx_hashes=tx_hashes,
            summary=(
                f"Swapped {_fmt(amount_in, from_asset)} {from_asset} for "
                f"{_fmt(received, asset)} {asset} and supplied to {action.protocol}"
            ),
        )

    def _adapter(self, protocol: str) -> BaseProtocolAdapter:
        parsed = Protocol.parse(protocol)
        adapter = self.adapters.get(parsed) if parsed is not None else None
        if adapter is None:
            raise ActionSkipped(f"No adapter for protocol {protocol!r}")
        return adapter

    def _destination(self, action: InvestmentAction) -> BaseProtocolAdapter:
        adapter = self._adapter(action.protocol)
        if not adapter.supports(action.asset):
            raise ActionSkipped(f"{action.protocol} has no market for {action.asset!r}")
        return adapter

    async def _position_amount(
        self, adapter: BaseProtocolAdapter, action: InvestmentAction
    ) -> int:
        asset = action.asset
        if not adapter.supports(asset):
            raise ActionSkipped(f"{adapter.adapter_name} has no market for {asset!r}")
        position = await fetch_position(adapter, asset, self.wallet)
        if position is None or position.formatted < Decimal(
            str(self.settings.min_position_balance)
        ):
            raise ActionSkipped(f"No {asset} position in {adapter.adapter_name}")
        amount = percent_of(position.raw_balance, action.amount_percent)
        if amount <= 0:
            raise ActionSkipped(f"{action.amount_percent}% of {asset} position is zero")
        return amount

    def _check_dust(self, asset: str, amount: int, tx_hashes: dict[str, str]) -> None:
        decimals = BSC_ASSETS[asset]["decimals"]
        value = usd_value(amount, decimals, self.prices.get(asset))
        floor = self.settings.dust_floor_usd
        if value < floor:
            raise ActionSkipped(
                f"{_fmt(amount, asset)} {asset} is dust (${value:.2f} < ${floor:.2f})",
                tx_hashes,
            )

    async def _wrap_native(self) -> str | None:
        """Wrap native BNB above the gas reserve into WBNB."""
        native = await self.chain.native_balance(self.wallet)
        reserve = self.settings.gas_reserve_wei
        if native <= reserve:
            return None
        amount = native - reserve
        wbnb = BSC_ASSETS[WRAPPED_NATIVE_SYMBOL]["address"]
        data = self.chain.encode(wbnb, load_wbnb_abi(), "deposit")
        tx_hash = await self.send(TxRequest(to=wbnb, data=data, value=amount))
        logger.info("Wrapped %s %s (tx %s)", _fmt(amount, NATIVE_SYMBOL), NATIVE_SYMBOL, tx_hash)
        self._emit(AUTO_WRAP, {"amount": _fmt(amount, NATIVE_SYMBOL), "txHash": tx_hash})
        return tx_hash

    def _emit(self, event_name: str, payload: dict) -> None:
        self.events.emit(event_name, payload, user_id=self.user_id)

    def _record(self, action: InvestmentAction, amount: int, tx_hash: str) -> None:
        record = TransactionRecord(
            user_id=self.user_id,
            action_type=action.type.value,
            asset=action.asset,
            protocol=action.protocol,
            amount=_fmt(amount, action.asset),
            tx_hash=tx_hash,
            from_protocol=action.from_protocol,
            ai_reasoning=action.reason or self.reasoning,
        )
        self.tasks.spawn(f"log_transaction:{tx_hash}", self.store.log_transaction(record))

    def _sync_position(self, adapter: BaseProtocolAdapter, asset: str) -> None:
        self.tasks.spawn(
            f"sync_position:{adapter.adapter_name}:{asset}",
            self._store_position(adapter, asset),
        )

    async def _store_position(self, adapter: BaseProtocolAdapter, asset: str) -> None:
        protocol = adapter.adapter_name
        position = await fetch_position(adapter, asset, self.wallet)
        if position is None or position.formatted < Decimal(
            str(self.settings.min_position_balance)
        ):
            await self.store.delete_position(self.user_id, protocol, asset)
            return
        await self.store.upsert_position(
            self.user_id,
            protocol,
            asset,
            format(position.formatted.normalize(), "f"),
            self.apys.get((protocol, asset), 0.0),
        )
