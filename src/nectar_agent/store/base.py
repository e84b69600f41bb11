from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from ..domain import (
    AgentWallet,
    PortfolioSnapshot,
    PositionRecord,
    RateSample,
    TransactionRecord,
)


class BasePortfolioStore(ABC):
    """Persistence boundary for users, positions, history and activity.

    Stored positions are a cache of what the chain reports; nothing here is
    trusted over a live read.
    """

    @abstractmethod
    async def get_user_wallet(self, user_id: str) -> AgentWallet | None:
        ...

    @abstractmethod
    async def list_agent_users(self) -> list[str]:
        """Users with an agent wallet and the agent enabled."""
        ...

    @abstractmethod
    async def list_wallet_users(self) -> list[str]:
        """Users with an agent wallet, enabled or not."""
        ...

    @abstractmethod
    async def get_user_settings(self, user_id: str) -> dict[str, Any] | None:
        """Raw strategy overrides for ``user_id``, ``None`` when unset."""
        ...

    @abstractmethod
    async def get_positions(self, user_id: str) -> list[PositionRecord]:
        ...

    @abstractmethod
    async def upsert_position(
        self, user_id: str, protocol: str, asset: str, amount: str, apy: float
    ) -> None:
        ...

    @abstractmethod
    async def delete_position(self, user_id: str, protocol: str, asset: str) -> None:
        ...

    @abstractmethod
    async def log_transaction(self, record: TransactionRecord) -> None:
        ...

    @abstractmethod
    async def save_activity(self, user_id: str, entry: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def get_recent_activity(self, limit: int) -> list[dict[str, Any]]:
        """Persisted activity entries across all users, newest first."""
        ...

    @abstractmethod
    async def save_yield_snapshot(self, samples: list[RateSample]) -> None:
        ...

    @abstractmethod
    async def get_rate_samples(self, since: datetime) -> list[RateSample]:
        """Samples recorded at or after ``since``, any order."""
        ...

    @abstractmethod
    async def get_recent_decisions(
        self, user_id: str, limit: int
    ) -> list[TransactionRecord]:
        """Newest first."""
        ...

    @abstractmethod
    async def get_position_ages(self, user_id: str) -> dict[str, datetime]:
        """``"protocol:asset"`` -> when the position was first opened."""
        ...

    @abstractmethod
    async def save_portfolio_snapshot(self, snapshot: PortfolioSnapshot) -> None:
        ...
