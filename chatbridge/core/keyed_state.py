"""Per-key sequencing primitives: asyncio locks and single-slot timers.

All per-turn state is keyed by "<project>:<instance>". Event handlers and
timer callbacks for the same key run one at a time under `KeyedLocks`;
`TimerSlots` keeps at most one live timer per (key, kind).
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

from structlog import get_logger

logger = get_logger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class KeyedLocks:
    """One asyncio.Lock per key, created on demand."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Serialize a critical section for one key."""
        async with self.get(key):
            yield

    def clear(self) -> None:
        """Forget idle locks (locks currently held are kept)."""
        self._locks = {key: lock for key, lock in self._locks.items() if lock.locked()}


class TimerSlots:
    """Single-slot timers keyed by (key, kind).

    Arming a slot cancels the timer already in it. A firing timer stays in its
    slot until its callback returns, so a callback may re-arm its own slot
    (the new timer replaces it without cancelling the running callback).

    Example:
        slots = TimerSlots()
        slots.arm("proj:claude", "lifecycle", 5.0, resolve_turn)
        slots.cancel("proj:claude", "lifecycle")
    """

    def __init__(self) -> None:
        self._slots: dict[tuple[str, str], asyncio.Task[None]] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def arm(
        self,
        key: str,
        kind: str,
        delay_s: float,
        callback: TimerCallback,
        *,
        interval_s: Optional[float] = None,
    ) -> asyncio.Task[None]:
        """Arm a one-shot timer, or a repeating one when interval_s is given.

        Args:
            key: State key ("<project>:<instance>")
            kind: Timer kind (thinking, lifecycle, fallback, ...)
            delay_s: Seconds before the first firing
            callback: Coroutine function run on each firing
            interval_s: Repeat period; None for a one-shot timer

        Returns:
            The task backing the timer
        """
        self.cancel(key, kind)
        slot = (key, kind)
        task = asyncio.create_task(self._run(slot, delay_s, callback, interval_s), name=f"timer:{kind}:{key}")
        self._slots[slot] = task
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    async def _run(
        self,
        slot: tuple[str, str],
        delay_s: float,
        callback: TimerCallback,
        interval_s: Optional[float],
    ) -> None:
        try:
            await asyncio.sleep(delay_s)
            while True:
                try:
                    await callback()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.error("Timer %s/%s callback failed", slot[0], slot[1], exc_info=True)
                # a one-shot timer, or one cancelled or replaced by its own callback
                if interval_s is None or self._slots.get(slot) is not asyncio.current_task():
                    break
                await asyncio.sleep(interval_s)
        finally:
            if self._slots.get(slot) is asyncio.current_task():
                del self._slots[slot]

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)

    def cancel(self, key: str, kind: str) -> bool:
        """Clear a slot before it fires. Returns True if a timer was cancelled."""
        task = self._slots.pop((key, kind), None)
        if task is None:
            return False
        if task is not asyncio.current_task() and not task.done():
            task.cancel()
        return True

    def cancel_key(self, key: str) -> None:
        """Cancel every timer kind for one key."""
        for slot_key, kind in list(self._slots):
            if slot_key == key:
                self.cancel(slot_key, kind)

    def cancel_all(self) -> None:
        for key, kind in list(self._slots):
            self.cancel(key, kind)

    def is_armed(self, key: str, kind: str) -> bool:
        return (key, kind) in self._slots

    def active_count(self) -> int:
        return len(self._slots)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait until no timer task is left (re-armed timers included)."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self._tasks:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError(f"{len(self._tasks)} timer task(s) still running")
            await asyncio.wait(set(self._tasks), timeout=remaining)
