"""Activity events: a bounded in-process feed plus best-effort persistence."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from .logger import get_logger
from .store import BasePortfolioStore
from .tasks import BackgroundTasks

logger = get_logger(__name__)

YIELDS_UPDATED = "yields_updated"
REBALANCE_STARTED = "rebalance_started"
AI_DECISION = "ai_decision"
ACTION_STARTED = "action_started"
AUTO_WRAP = "auto_wrap"
ACTION_COMPLETED = "action_completed"
ACTION_SKIPPED = "action_skipped"
ACTION_FAILED = "action_failed"
REBALANCE_COMPLETED = "rebalance_completed"
AGENT_STARTED = "agent_started"
AGENT_STOPPED = "agent_stopped"
AGENT_ERROR = "agent_error"
DAILY_SUMMARY = "daily_summary"


@dataclass(frozen=True)
class ActivityEvent:
    event_name: str
    payload: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event_name,
            "payload": self.payload,
            "user_id": self.user_id,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivityEvent:
        return cls(
            event_name=data["event"],
            payload=dict(data.get("payload") or {}),
            user_id=data.get("user_id"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


EventSink = Callable[[ActivityEvent], None]


class EventLog:
    """Keeps the newest ``maxlen`` events and fans each one out to sinks.

    Events tied to a user are also written to the store through
    ``BackgroundTasks`` when both are configured.
    """

    def __init__(
        self,
        maxlen: int = 200,
        store: BasePortfolioStore | None = None,
        tasks: BackgroundTasks | None = None,
    ):
        self._buffer: deque[ActivityEvent] = deque(maxlen=maxlen)
        self._sinks: list[EventSink] = []
        self._store = store
        self._tasks = tasks

    def subscribe(self, sink: EventSink) -> Callable[[], None]:
        """Register ``sink``; the returned callable unregisters it."""
        self._sinks.append(sink)

        def unsubscribe() -> None:
            if sink in self._sinks:
                self._sinks.remove(sink)

        return unsubscribe

    def emit(
        self,
        event_name: str,
        payload: dict[str, Any] | None = None,
        user_id: str | None = None,
    ) -> ActivityEvent:
        event = ActivityEvent(event_name, dict(payload or {}), user_id)
        self._buffer.append(event)
        logger.debug("Event %s %s", event_name, event.payload)

        for sink in list(self._sinks):
            try:
                sink(event)
            except Exception as e:
                logger.warning("Event sink %r failed on %s: %s", sink, event_name, e)

        if user_id and self._store is not None and self._tasks is not None:
            self._tasks.spawn(
                f"save_activity:{event_name}",
                self._store.save_activity(user_id, event.to_dict()),
            )
        return event

    def restore(self, entries: Iterable[dict[str, Any]]) -> int:
        """Backfill persisted events, given newest first, behind the live ones.

        Entries already in the buffer are skipped, and nothing is evicted to
        make room. Restored events are not re-persisted or sent to sinks.
        """
        seen = {(e.event_name, e.timestamp) for e in self._buffer}
        restored = 0
        for entry in entries:
            if len(self._buffer) == self._buffer.maxlen:
                break
            event = ActivityEvent.from_dict(entry)
            key = (event.event_name, event.timestamp)
            if key in seen:
                continue
            seen.add(key)
            self._buffer.appendleft(event)
            restored += 1
        return restored

    def recent(self, limit: int | None = None) -> list[ActivityEvent]:
        """Newest first."""
        events = list(reversed(self._buffer))
        return events if limit is None else events[:limit]

    def __len__(self) -> int:
        return len(self._buffer)
