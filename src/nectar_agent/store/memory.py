from __future__ import annotations

from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from ..domain import (
    AgentWallet,
    PortfolioSnapshot,
    PositionRecord,
    RateSample,
    TransactionRecord,
)
from .base import BasePortfolioStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryPortfolioStore(BasePortfolioStore):
    """Process-local store used by the CLI and the test suite."""

    def __init__(self, max_samples: int = 50_000, max_activity: int = 1_000):
        self._wallets: dict[str, AgentWallet] = {}
        self._enabled: set[str] = set()
        self._settings: dict[str, dict[str, Any]] = {}
        self._positions: dict[tuple[str, str, str], PositionRecord] = {}
        self._transactions: list[TransactionRecord] = []
        self._activity: dict[str, deque[dict[str, Any]]] = {}
        self._activity_feed: deque[dict[str, Any]] = deque(maxlen=max_activity)
        self._samples: deque[RateSample] = deque(maxlen=max_samples)
        self._snapshots: list[PortfolioSnapshot] = []
        self._max_activity = max_activity

    def add_user(
        self,
        wallet: AgentWallet,
        settings: dict[str, Any] | None = None,
        enabled: bool = True,
    ) -> None:
        self._wallets[wallet.user_id] = wallet
        if settings is not None:
            self._settings[wallet.user_id] = dict(settings)
        if enabled:
            self._enabled.add(wallet.user_id)
        else:
            self._enabled.discard(wallet.user_id)

    @property
    def transactions(self) -> list[TransactionRecord]:
        return list(self._transactions)

    @property
    def snapshots(self) -> list[PortfolioSnapshot]:
        return list(self._snapshots)

    def activity(self, user_id: str) -> list[dict[str, Any]]:
        return list(self._activity.get(user_id, ()))

    async def get_user_wallet(self, user_id: str) -> AgentWallet | None:
        return self._wallets.get(user_id)

    async def list_agent_users(self) -> list[str]:
        return sorted(u for u in self._enabled if u in self._wallets)

    async def list_wallet_users(self) -> list[str]:
        return sorted(self._wallets)

    async def get_user_settings(self, user_id: str) -> dict[str, Any] | None:
        settings = self._settings.get(user_id)
        return dict(settings) if settings is not None else None

    async def get_positions(self, user_id: str) -> list[PositionRecord]:
        return [p for (uid, _, _), p in self._positions.items() if uid == user_id]

    async def upsert_position(
        self, user_id: str, protocol: str, asset: str, amount: str, apy: float
    ) -> None:
        now = _utcnow()
        key = (user_id, protocol, asset)
        existing = self._positions.get(key)
        if existing is None:
            self._positions[key] = PositionRecord(
                user_id=user_id,
                protocol=protocol,
                asset=asset,
                amount=amount,
                apy=apy,
                opened_at=now,
                updated_at=now,
            )
        else:
            self._positions[key] = replace(
                existing, amount=amount, apy=apy, updated_at=now
            )

    async def delete_position(self, user_id: str, protocol: str, asset: str) -> None:
        self._positions.pop((user_id, protocol, asset), None)

    async def log_transaction(self, record: TransactionRecord) -> None:
        if record.created_at is None:
            record = replace(record, created_at=_utcnow())
        self._transactions.append(record)

    async def save_activity(self, user_id: str, entry: dict[str, Any]) -> None:
        log = self._activity.setdefault(user_id, deque(maxlen=self._max_activity))
        log.append(dict(entry))
        self._activity_feed.append(dict(entry))

    async def get_recent_activity(self, limit: int) -> list[dict[str, Any]]:
        return list(reversed(self._activity_feed))[:limit]

    async def save_yield_snapshot(self, samples: list[RateSample]) -> None:
        self._samples.extend(samples)

    async def get_rate_samples(self, since: datetime) -> list[RateSample]:
        return [s for s in self._samples if s.recorded_at >= since]

    async def get_recent_decisions(
        self, user_id: str, limit: int
    ) -> list[TransactionRecord]:
        mine = [t for t in self._transactions if t.user_id == user_id]
        return list(reversed(mine))[:limit]

    async def get_position_ages(self, user_id: str) -> dict[str, datetime]:
        return {
            f"{p.protocol}:{p.asset}": p.opened_at
            for p in await self.get_positions(user_id)
            if p.opened_at is not None
        }

    async def save_portfolio_snapshot(self, snapshot: PortfolioSnapshot) -> None:
        if snapshot.created_at is None:
            snapshot = replace(snapshot, created_at=_utcnow())
        self._snapshots.append(snapshot)
