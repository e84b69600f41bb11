from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from ..decision import DecisionContext, DecisionPlan
from ..domain import AgentWallet, PortfolioPosition, TokenBalance
from ..execution import CycleReport, ExecutionResult
from ..settings import StrategySettings
from ..state import AppState


class AgentWalletNotFoundError(LookupError):
    """Raised when a user has no agent wallet to operate on."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"No agent wallet found for user '{user_id}'")


@dataclass
class CycleContext:
    state: AppState
    user_id: str
    dry_run: bool
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    wallet: AgentWallet | None = None
    strategy: StrategySettings | None = None
    balances: list[TokenBalance] | None = None
    positions: list[PortfolioPosition] | None = None
    decision_context: DecisionContext | None = None
    plan: DecisionPlan | None = None
    results: list[ExecutionResult] = field(default_factory=list)
    report: CycleReport | None = None

    @property
    def wallet_required(self) -> AgentWallet:
        if self.wallet is None:
            raise RuntimeError(
                "Wallet has not been set. Ensure load_portfolio() is called before accessing this property."
            )
        return self.wallet

    @property
    def strategy_required(self) -> StrategySettings:
        if self.strategy is None:
            raise RuntimeError(
                "Strategy has not been set. Ensure load_portfolio() is called before accessing this property."
            )
        return self.strategy

    @property
    def balances_required(self) -> list[TokenBalance]:
        if self.balances is None:
            raise RuntimeError(
                "Balances have not been set. Ensure load_portfolio() is called before accessing this property."
            )
        return self.balances

    @property
    def positions_required(self) -> list[PortfolioPosition]:
        if self.positions is None:
            raise RuntimeError(
                "Positions have not been set. Ensure load_portfolio() is called before accessing this property."
            )
        return self.positions

    @property
    def decision_context_required(self) -> DecisionContext:
        if self.decision_context is None:
            raise RuntimeError(
                "Decision context has not been set. Ensure assemble_context() is called before accessing this property."
            )
        return self.decision_context

    @property
    def plan_required(self) -> DecisionPlan:
        if self.plan is None:
            raise RuntimeError(
                "Plan has not been set. Ensure decide() is called before accessing this property."
            )
        return self.plan

    @property
    def report_required(self) -> CycleReport:
        if self.report is None:
            raise RuntimeError(
                "Report has not been set. Ensure build_report() is called before accessing this property."
            )
        return self.report
