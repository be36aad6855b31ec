"""Unit tests for TaskRegistry."""

import asyncio
from unittest.mock import patch

import pytest

from chatbridge.core.task_registry import TaskRegistry


@pytest.mark.asyncio
async def test_spawn_tracks_task_until_done():
    """Spawned tasks are tracked and dropped once finished."""
    registry = TaskRegistry()
    ready = asyncio.Event()

    async def waiter():
        await ready.wait()
        return "done"

    task = registry.spawn(waiter(), name="questions:app:claude")
    assert registry.task_count() == 1
    assert task.get_name() == "questions:app:claude"

    ready.set()
    assert await task == "done"
    await asyncio.sleep(0)
    assert registry.task_count() == 0


@pytest.mark.asyncio
async def test_shutdown_cancels_pending_tasks():
    """shutdown() cancels tasks and waits for them to finish."""
    registry = TaskRegistry()
    blocker = asyncio.Event()

    async def long_coro():
        await blocker.wait()

    tasks = [registry.spawn(long_coro(), name=f"task-{i}") for i in range(3)]

    await registry.shutdown(timeout=0.5)

    assert all(task.cancelled() for task in tasks)


@pytest.mark.asyncio
async def test_wait_idle_does_not_cancel():
    registry = TaskRegistry()

    async def quick():
        await asyncio.sleep(0.01)
        return 1

    task = registry.spawn(quick())
    await registry.wait_idle(timeout=0.5)

    assert task.done()
    assert not task.cancelled()


@pytest.mark.asyncio
async def test_empty_shutdown():
    registry = TaskRegistry()
    await registry.shutdown(timeout=0.1)
    assert registry.task_count() == 0


@pytest.mark.asyncio
async def test_task_exception_is_logged():
    """A failing background task is logged with its traceback."""
    registry = TaskRegistry()

    async def failing_coro():
        raise ValueError("boom")

    with patch("chatbridge.core.task_registry.logger") as mock_logger:
        task = registry.spawn(failing_coro(), name="failing-task")
        with pytest.raises(ValueError):
            await task
        await asyncio.sleep(0)

        mock_logger.error.assert_called_once()
        call = mock_logger.error.call_args
        assert "failing-task" in call.args
        assert isinstance(call.kwargs["exc_info"], ValueError)
