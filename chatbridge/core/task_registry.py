"""Registry for detached background tasks.

Work that must not hold a per-key lock (waiting on an interactive question
for minutes, for instance) is spawned here so it is tracked, its failures are
logged, and it is cancelled on shutdown.
"""

from __future__ import annotations

import asyncio
from typing import Coroutine, TypeVar

from structlog import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class TaskRegistry:
    """Tracks spawned asyncio tasks until they finish.

    Example:
        registry = TaskRegistry()
        registry.spawn(ask_questions(), name="questions:proj:claude")
        await registry.shutdown(timeout=5.0)
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[object]] = set()

    def _on_task_done(self, task: asyncio.Task[object]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)

    def spawn(self, coro: Coroutine[object, object, T], name: str | None = None) -> asyncio.Task[T]:
        """Spawn a tracked background task."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)  # type: ignore[arg-type]
        task.add_done_callback(self._on_task_done)  # type: ignore[arg-type]
        logger.debug("Spawned tracked task: %s (total: %d)", task.get_name(), len(self._tasks))
        return task

    async def wait_idle(self, timeout: float = 5.0) -> None:
        """Wait for currently tracked tasks to finish without cancelling them."""
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel all tracked tasks and wait up to `timeout` seconds for them."""
        if not self._tasks:
            return

        task_count = len(self._tasks)
        logger.info("Shutting down %d tracked tasks (timeout=%.1fs)", task_count, timeout)
        for task in self._tasks:
            if not task.done():
                task.cancel()

        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(
                "Shutdown timeout: %d/%d tasks still pending after %.1fs",
                len(pending),
                task_count,
                timeout,
            )

    def task_count(self) -> int:
        return len(self._tasks)
