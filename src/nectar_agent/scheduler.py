"""Periodic driver running a rebalance cycle for every agent user."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone

from .events import AGENT_ERROR, AGENT_STARTED, AGENT_STOPPED, DAILY_SUMMARY
from .execution import CycleReport
from .pipeline.rates import refresh_yields
from .pipeline.run import run_rebalance_cycle
from .pipeline.snapshot import take_portfolio_snapshot
from .state import AppState


class AgentScheduler:
    """Ticks while ``state.agent.running`` is set.

    A failing user never stops the tick: the error is logged, an
    ``agent_error`` event is emitted and the next user runs. Between ticks
    the scheduler also saves hourly portfolio snapshots and, after each UTC
    midnight, a daily summary.
    """

    def __init__(self, state: AppState):
        self.state = state
        self.snapshot_interval = timedelta(
            minutes=state.settings.snapshot_interval_minutes
        )
        self._next_snapshot_at: datetime | None = None
        self._summary_date: date | None = None

    @property
    def running(self) -> bool:
        return self.state.agent.running

    def start(self) -> None:
        if self.running:
            return
        self.state.agent.running = True
        self.state.events.emit(
            AGENT_STARTED,
            {"intervalMinutes": self.state.settings.rebalance_interval_minutes},
        )
        self.state.logger.info("Agent started")

    def stop(self) -> None:
        if not self.running:
            return
        self.state.agent.running = False
        self.state.events.emit(AGENT_STOPPED)
        self.state.logger.info("Agent stopped")

    async def restore_activity(self) -> int:
        """Backfill the activity feed from the store; returns events restored."""
        state = self.state
        try:
            rows = await state.store.get_recent_activity(
                state.settings.activity_buffer_size
            )
            restored = state.events.restore(rows)
        except Exception as e:
            state.logger.error("Failed to load activity history: %s", e)
            return 0
        if restored:
            state.logger.info("Restored %d activity events from the store", restored)
        return restored

    async def tick(self) -> dict[str, CycleReport]:
        """Refresh market data, then run one cycle per user, sequentially."""
        state = self.state
        log = state.logger
        if not self.running:
            log.debug("Agent not running; skipping tick")
            return {}

        await state.prices.refresh(state.market)
        await refresh_yields(state)

        reports: dict[str, CycleReport] = {}
        for user_id in await state.store.list_agent_users():
            try:
                reports[user_id] = await run_rebalance_cycle(state, user_id)
            except Exception as e:
                log.error("Rebalance failed for %s: %s", user_id, e)
                state.events.emit(
                    AGENT_ERROR,
                    {"error": f"{type(e).__name__}: {e}"},
                    user_id=user_id,
                )
        return reports

    async def snapshot_all(self) -> int:
        """Snapshot every user with an agent wallet; returns how many were saved."""
        state = self.state
        saved = 0
        for user_id in await state.store.list_wallet_users():
            wallet = await state.store.get_user_wallet(user_id)
            if wallet is None:
                continue
            try:
                await take_portfolio_snapshot(state, user_id, wallet.address)
            except Exception as e:
                state.logger.error("Snapshot failed for %s: %s", user_id, e)
                continue
            saved += 1
        return saved

    async def daily_summary(self) -> int:
        saved = await self.snapshot_all()
        plural = "" if saved == 1 else "s"
        self.state.events.emit(
            DAILY_SUMMARY,
            {
                "title": "Daily performance summary",
                "description": f"Portfolio snapshots saved for {saved} active user{plural}",
                "snapshots": saved,
            },
        )
        self.state.logger.info("Daily summary: %d snapshot(s) saved", saved)
        return saved

    async def run_housekeeping(self, now: datetime | None = None) -> None:
        """Run the snapshot jobs that are due at ``now``.

        The first call snapshots immediately. The first call on a new UTC
        day runs the daily summary, which also counts as the hourly snapshot.
        """
        now = now or datetime.now(timezone.utc)
        if self._summary_date is None:
            self._summary_date = now.date()
        elif now.date() > self._summary_date:
            self._summary_date = now.date()
            await self.daily_summary()
            self._next_snapshot_at = now + self.snapshot_interval
            return

        if self._next_snapshot_at is None or now >= self._next_snapshot_at:
            await self.snapshot_all()
            self._next_snapshot_at = now + self.snapshot_interval

    async def run_forever(self) -> None:
        """Tick every ``rebalance_interval_minutes`` until stopped."""
        interval = self.state.settings.rebalance_interval_minutes * 60
        await self.restore_activity()
        self.start()
        try:
            while self.running:
                try:
                    await self.tick()
                except Exception as e:
                    self.state.logger.error("Agent tick failed: %s", e)
                    self.state.events.emit(
                        AGENT_ERROR, {"error": f"{type(e).__name__}: {e}"}
                    )
                try:
                    await self.run_housekeeping()
                except Exception as e:
                    self.state.logger.error("Snapshot jobs failed: %s", e)
                await asyncio.sleep(interval)
        finally:
            self.stop()
