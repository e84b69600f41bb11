from __future__ import annotations

from .executor import ActionExecutor
from .results import (
    ActionSkipped,
    ActionStatus,
    CycleReport,
    ExecutionResult,
    PartialExecutionError,
)

__all__ = [
    "ActionExecutor",
    "ActionSkipped",
    "ActionStatus",
    "CycleReport",
    "ExecutionResult",
    "PartialExecutionError",
]
