"""
Background Task Registry

Detaches work from the request that started it. A spawned task keeps
running after the response has been sent; the request handler gets no
completion signal. The registry only holds a reference so the task is
not garbage collected, logs failures nobody else will see, and gives
the application a way to drain outstanding work on shutdown.
"""

import asyncio
import logging
from typing import Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundTaskRegistry:
    """Fire-and-forget task holder."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self._stats = {"spawned": 0, "completed": 0, "failed": 0, "cancelled": 0}

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        """Schedule ``coro`` on the running loop without awaiting it."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        self._stats["spawned"] += 1
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            self._stats["cancelled"] += 1
            logger.warning(f"[Background] Task {task.get_name()} was cancelled")
            return
        error = task.exception()
        if error is not None:
            self._stats["failed"] += 1
            logger.error(
                f"[Background] Task {task.get_name()} failed: {error}",
                exc_info=error,
            )
            return
        self._stats["completed"] += 1

    def __len__(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait for every outstanding task, cancelling what is left after
        ``timeout`` seconds.

        Returns:
            Number of tasks that had to be cancelled.
        """
        if not self._tasks:
            return 0

        pending_count = len(self._tasks)
        logger.info(f"[Background] Draining {pending_count} task(s)")
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)
            logger.warning(f"[Background] Cancelled {len(pending)} task(s) still running at shutdown")

        return len(pending)

    def get_stats(self) -> dict:
        return {**self._stats, "running": len(self._tasks)}
