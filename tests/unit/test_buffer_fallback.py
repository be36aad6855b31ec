"""Unit tests for the terminal buffer fallback."""

from typing import Optional
from unittest.mock import AsyncMock

import pytest

from chatbridge.config import FallbackSettings
from chatbridge.core.buffer_fallback import (
    DELIVERY_FAILED_TEXT,
    BufferFallbackPoller,
    extract_last_command_block,
    is_idle_block,
    is_separator,
    prompt_marker_pattern,
)
from chatbridge.core.keyed_state import KeyedLocks, TimerSlots
from chatbridge.core.models import FrameLine, FrameSegment, TerminalFrame
from chatbridge.core.pending_tracker import PendingTracker
from tests.conftest import RecordingMessaging

RULE = "─" * 40


class FakeCapture:
    """Returns queued captures in order; the last one repeats."""

    def __init__(self, buffers: tuple[str, ...] = (), frames: tuple[TerminalFrame, ...] = ()) -> None:
        self.buffers = list(buffers)
        self.frames = list(frames)
        self.buffer_reads = 0

    async def get_window_frame(self, session_name: str, window_name: str) -> Optional[TerminalFrame]:
        return self.frames.pop(0) if self.frames else None

    async def get_window_buffer(self, session_name: str, window_name: str) -> Optional[str]:
        self.buffer_reads += 1
        if not self.buffers:
            return None
        return self.buffers.pop(0) if len(self.buffers) > 1 else self.buffers[0]


def frame(*lines: str) -> TerminalFrame:
    return TerminalFrame(lines=[FrameLine(segments=[FrameSegment(text=line)]) for line in lines])


@pytest.fixture
def timers() -> TimerSlots:
    return TimerSlots()


@pytest.fixture
def tracker(messaging: RecordingMessaging) -> PendingTracker:
    return PendingTracker(messaging)


def make_poller(messaging, tracker, timers, capture, **overrides) -> BufferFallbackPoller:
    settings = FallbackSettings(
        initial_delay_s=overrides.get("initial_delay_s", 0.01),
        stable_check_s=overrides.get("stable_check_s", 0.01),
        max_checks=overrides.get("max_checks", 3),
    )
    return BufferFallbackPoller(messaging, capture, tracker, timers, KeyedLocks(), settings)


async def run_fallback(poller: BufferFallbackPoller, timers: TimerSlots) -> None:
    poller.schedule("app", "codex", "app", "codex", None, "C2")
    await timers.drain(timeout=0.5)


@pytest.mark.asyncio
async def test_stable_output_is_delivered(messaging, tracker, timers):
    await tracker.mark_pending("app", "codex", "C2", "m-1")
    capture = FakeCapture(buffers=("❯ fix it\nworking", "❯ fix it\nFixed the bug.", "❯ fix it\nFixed the bug."))

    await run_fallback(make_poller(messaging, tracker, timers, capture), timers)

    assert messaging.channel_texts() == ["```\n❯ fix it\nFixed the bug.\n```"]
    assert not tracker.has_pending("app", "codex")
    assert messaging.of("replace_own_reaction") == [("C2", "m-1", "⏳", "✅")]


@pytest.mark.asyncio
async def test_gives_up_after_max_checks(messaging, tracker, timers):
    await tracker.mark_pending("app", "codex", "C2", "m-1")
    capture = FakeCapture(buffers=("❯ go\n1", "❯ go\n2", "❯ go\n3", "❯ go\n4"))

    await run_fallback(make_poller(messaging, tracker, timers, capture), timers)

    assert capture.buffer_reads == 3
    assert messaging.channel_texts() == []
    assert tracker.has_pending("app", "codex")


@pytest.mark.asyncio
async def test_idle_prompt_is_never_delivered(messaging, tracker, timers):
    await tracker.mark_pending("app", "codex", "C2", "m-1")
    idle_screen = f"previous answer\n❯ \n{RULE}\n  ? for shortcuts"
    capture = FakeCapture(buffers=(idle_screen,))

    await run_fallback(make_poller(messaging, tracker, timers, capture, max_checks=4), timers)

    assert capture.buffer_reads == 4
    assert messaging.channel_texts() == []
    assert tracker.has_pending("app", "codex")


@pytest.mark.asyncio
async def test_idle_then_output(messaging, tracker, timers):
    await tracker.mark_pending("app", "codex", "C2", "m-1")
    capture = FakeCapture(buffers=("❯", "❯ build\nok", "❯ build\nok"))

    await run_fallback(make_poller(messaging, tracker, timers, capture), timers)

    assert messaging.channel_texts() == ["```\n❯ build\nok\n```"]


@pytest.mark.asyncio
async def test_resolved_turn_stops_polling(messaging, tracker, timers):
    capture = FakeCapture(buffers=("❯ go\nout",))

    await run_fallback(make_poller(messaging, tracker, timers, capture), timers)

    assert capture.buffer_reads == 0
    assert messaging.calls == []


@pytest.mark.asyncio
async def test_hook_active_defers_to_hooks(messaging, tracker, timers):
    await tracker.mark_pending("app", "codex", "C2", "m-1")
    tracker.set_hook_active("app", "codex")
    capture = FakeCapture(buffers=("❯ go\nout",))

    await run_fallback(make_poller(messaging, tracker, timers, capture), timers)

    assert capture.buffer_reads == 0
    assert tracker.has_pending("app", "codex")


@pytest.mark.asyncio
async def test_empty_capture_aborts(messaging, tracker, timers):
    await tracker.mark_pending("app", "codex", "C2", "m-1")
    capture = FakeCapture(buffers=("\x1b[0m\n\n",))

    await run_fallback(make_poller(messaging, tracker, timers, capture), timers)

    assert capture.buffer_reads == 1
    assert messaging.channel_texts() == []


@pytest.mark.asyncio
async def test_send_failure_posts_notice_and_keeps_turn(messaging, tracker, timers):
    await tracker.mark_pending("app", "codex", "C2", "m-1")
    messaging.send_to_channel = AsyncMock(side_effect=[RuntimeError("rejected"), None])
    capture = FakeCapture(buffers=("❯ go\nresult",))

    await run_fallback(make_poller(messaging, tracker, timers, capture, max_checks=2), timers)

    assert messaging.send_to_channel.await_count == 2
    assert messaging.send_to_channel.await_args_list[1].args == ("C2", DELIVERY_FAILED_TEXT)
    assert tracker.has_pending("app", "codex")


@pytest.mark.asyncio
async def test_long_output_is_sent_in_fenced_chunks(messaging, tracker, timers):
    messaging.platform = "discord"
    await tracker.mark_pending("app", "codex", "C2", "m-1")
    rows = [f"row {index:05d}" for index in range(400)]
    capture = FakeCapture(buffers=("❯ dump\n" + "\n".join(rows),))

    await run_fallback(make_poller(messaging, tracker, timers, capture, max_checks=2), timers)

    messages = messaging.channel_texts()
    assert len(messages) > 1
    assert all(len(message) <= 1900 for message in messages)
    assert all(message.startswith("```\n") and message.endswith("\n```") for message in messages)
    delivered = "\n".join(message[4:-4] for message in messages).split("\n")
    assert delivered == ["❯ dump", *rows]
    assert not tracker.has_pending("app", "codex")


@pytest.mark.asyncio
async def test_reschedule_replaces_previous_run(messaging, tracker, timers):
    poller = make_poller(messaging, tracker, timers, FakeCapture(), initial_delay_s=10)

    poller.schedule("app", "codex", "app", "codex", None, "C2")
    poller.schedule("app", "codex", "app", "codex", None, "C2")

    assert timers.active_count() == 1
    poller.cancel("app", "codex")
    assert timers.active_count() == 0


@pytest.mark.asyncio
async def test_frame_capture_is_preferred(messaging, tracker, timers):
    capture = FakeCapture(buffers=("raw",), frames=(frame("❯ go  ", "done", ""),))
    poller = make_poller(messaging, tracker, timers, capture)

    assert await poller.capture_text("app", "codex") == "❯ go\ndone"
    assert capture.buffer_reads == 0


@pytest.mark.asyncio
async def test_raw_buffer_is_cleaned(messaging, tracker, timers):
    capture = FakeCapture(buffers=("\x1b[32m❯ go\x1b[0m\r\nok\r\n",))
    poller = make_poller(messaging, tracker, timers, capture)

    assert await poller.capture_text("app", "codex") == "❯ go\nok"


@pytest.mark.asyncio
async def test_capture_errors_yield_none(messaging, tracker, timers):
    capture = FakeCapture()
    capture.get_window_frame = AsyncMock(side_effect=RuntimeError("no tmux"))
    capture.get_window_buffer = AsyncMock(side_effect=RuntimeError("no tmux"))
    poller = make_poller(messaging, tracker, timers, capture)

    assert await poller.capture_text("app", "codex") is None


class TestCommandBlocks:
    def test_extracts_from_last_prompt(self):
        text = "❯ first\nold output\n❯ second\nnew output\n\n"

        assert extract_last_command_block(text) == "❯ second\nnew output"

    def test_without_prompt_returns_everything(self):
        assert extract_last_command_block("just output\n") == "just output"

    def test_alternate_marker(self):
        assert extract_last_command_block("a\n› q\nanswer") == "› q\nanswer"
        assert is_idle_block("›")

    def test_custom_markers(self):
        prompt_re = prompt_marker_pattern([">>>"])

        assert extract_last_command_block(">>> 1+1\n2", prompt_re) == ">>> 1+1\n2"
        assert is_idle_block(">>> ", prompt_re)

    def test_prompt_marker_must_be_a_token(self):
        assert extract_last_command_block("❯ a\nb\n❯x") == "❯ a\nb\n❯x"


class TestIdleClassification:
    def test_blank_and_bare_prompt(self):
        assert is_idle_block("")
        assert is_idle_block("❯ ")
        assert is_idle_block("❯\n\n")

    def test_menu_with_three_lines_is_idle(self):
        assert is_idle_block(f"❯ \n{RULE}\n  ? for shortcuts\n  model: opus\n  ctx: 40%")

    def test_menu_with_four_lines_is_output(self):
        assert not is_idle_block(f"❯ \n{RULE}\n  one\n  two\n  three\n  four")

    def test_prompt_followed_by_output(self):
        assert not is_idle_block("❯ run tests\n12 passed")

    def test_block_without_prompt(self):
        assert not is_idle_block("Traceback (most recent call last):")

    def test_separators(self):
        assert is_separator(RULE)
        assert is_separator("- - - - -")
        assert is_separator("═" * 30 + "x")
        assert not is_separator("hello ---")
        assert not is_separator("   ")
