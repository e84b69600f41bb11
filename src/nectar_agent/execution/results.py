from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..decision import DecisionPlan, InvestmentAction


class ActionStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"
    HELD = "held"


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one plan action.

    ``tx_hashes`` maps a sub-step (``wrap``, ``withdraw``, ``swap``,
    ``supply``) to the hash of the transaction that landed for it. A partial
    result keeps the hashes of the steps that did land.
    """

    action: InvestmentAction
    status: ActionStatus
    tx_hashes: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    summary: str = ""

    @property
    def success(self) -> bool:
        return self.status is ActionStatus.SUCCESS

    def to_payload(self) -> dict[str, Any]:
        return {
            "action": self.action.to_payload(),
            "status": self.status.value,
            "txHashes": dict(self.tx_hashes),
            "error": self.error,
            "summary": self.summary,
        }


class ActionSkipped(Exception):
    """A precondition failed before anything irreversible happened."""

    def __init__(self, message: str, tx_hashes: dict[str, str] | None = None):
        super().__init__(message)
        self.tx_hashes = dict(tx_hashes or {})


class PartialExecutionError(Exception):
    """A later sub-step failed after an earlier one landed on-chain."""

    def __init__(self, message: str, tx_hashes: dict[str, str]):
        super().__init__(message)
        self.tx_hashes = dict(tx_hashes)


@dataclass(frozen=True)
class CycleReport:
    """User-visible outcome of one rebalance cycle."""

    user_id: str
    wallet_address: str
    plan: DecisionPlan
    results: list[ExecutionResult]
    dry_run: bool
    started_at: datetime
    finished_at: datetime

    def count(self, status: ActionStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def any_success(self) -> bool:
        return any(r.success for r in self.results)

    def to_payload(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "wallet": self.wallet_address,
            "dryRun": self.dry_run,
            "plan": self.plan.to_payload(),
            "results": [r.to_payload() for r in self.results],
            "counts": {s.value: self.count(s) for s in ActionStatus},
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat(),
        }
