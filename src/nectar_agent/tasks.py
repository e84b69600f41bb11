"""Fire-and-forget side effects whose failure must never fail a cycle."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from .logger import get_logger

logger = get_logger(__name__)


class BackgroundTasks:
    """Tracks best-effort tasks so they can be drained on shutdown.

    A failed task is logged at WARNING and otherwise ignored. Callers never
    await a spawned task.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("Best-effort task %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Best-effort task %s failed: %s", task.get_name(), exc)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for pending tasks; whatever is still running after ``timeout`` is cancelled."""
        if not self._tasks:
            return
        pending = set(self._tasks)
        logger.debug("Draining %d best-effort task(s)", len(pending))
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.wait(still_running)
