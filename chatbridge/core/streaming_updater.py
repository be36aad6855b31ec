"""Editable streaming preview, one per (project, instance).

The preview is a message already posted by the caller. `append` buffers a
line and schedules a debounced edit; `finalize` replaces the preview with a
summary header once the turn ends.
"""

from __future__ import annotations

from typing import Optional

from structlog import get_logger

from chatbridge.constants import (
    FINALIZE_DEFAULT_HEADER,
    STREAMING_PLACEHOLDER,
    STREAMING_PREVIEW_LINES,
    TIMER_STREAM_FLUSH,
)
from chatbridge.core.keyed_state import KeyedLocks, TimerSlots
from chatbridge.core.models import StreamingState, state_key
from chatbridge.core.protocols import MessagingClient

logger = get_logger(__name__)


class StreamingUpdater:
    """Debounced editor for per-turn preview messages.

    The debounced flush takes the per-key lock, so it never interleaves with
    a handler running under the same key.
    """

    def __init__(
        self,
        messaging: MessagingClient,
        timers: TimerSlots,
        locks: KeyedLocks,
        debounce_s: float = 0.75,
    ) -> None:
        self._messaging = messaging
        self._timers = timers
        self._locks = locks
        self._debounce_s = debounce_s
        self._states: dict[str, StreamingState] = {}

    def can_stream(self) -> bool:
        return bool(self._messaging.supports_edits)

    def start(
        self,
        project_name: str,
        instance_key: str,
        channel_id: str,
        message_id: str,
        turn_message_id: Optional[str] = None,
    ) -> None:
        """Bind the preview to a posted message, replacing any previous binding."""
        if not self.can_stream():
            return
        key = state_key(project_name, instance_key)
        self._timers.cancel(key, TIMER_STREAM_FLUSH)
        self._states[key] = StreamingState(
            channel_id=channel_id,
            message_id=message_id,
            turn_message_id=turn_message_id,
        )

    def append(self, project_name: str, instance_key: str, text: str) -> bool:
        """Buffer a preview line and schedule an edit.

        Returns:
            False when no preview is bound
        """
        key = state_key(project_name, instance_key)
        state = self._states.get(key)
        if state is None:
            return False

        state.buffer.append(text)
        self._timers.arm(key, TIMER_STREAM_FLUSH, self._debounce_s, lambda: self._flush(key))
        return True

    async def _flush(self, key: str) -> None:
        async with self._locks.hold(key):
            state = self._states.get(key)
            if state is None:
                return
            content = render_preview(state.buffer)
            try:
                await self._messaging.update_message(state.channel_id, state.message_id, content)
            except Exception:
                logger.warning("Failed to update streaming preview for %s", key, exc_info=True)

    async def finalize(
        self,
        project_name: str,
        instance_key: str,
        header: Optional[str] = None,
        expected_turn_message_id: Optional[str] = None,
    ) -> None:
        """Replace the preview with `header` (default "✅ Done") and unbind it.

        When `expected_turn_message_id` is given, a preview bound to a
        different turn is left alone.
        """
        key = state_key(project_name, instance_key)
        state = self._states.get(key)
        if state is None:
            return
        if expected_turn_message_id and expected_turn_message_id not in (state.turn_message_id, state.message_id):
            logger.debug("Skipping finalize for %s: preview belongs to another turn", key)
            return

        self._timers.cancel(key, TIMER_STREAM_FLUSH)
        del self._states[key]
        try:
            await self._messaging.update_message(state.channel_id, state.message_id, header or FINALIZE_DEFAULT_HEADER)
        except Exception:
            logger.warning("Failed to finalize streaming preview for %s", key, exc_info=True)

    def discard(self, project_name: str, instance_key: str) -> None:
        key = state_key(project_name, instance_key)
        self._timers.cancel(key, TIMER_STREAM_FLUSH)
        self._states.pop(key, None)

    def has(self, project_name: str, instance_key: str) -> bool:
        return state_key(project_name, instance_key) in self._states

    def is_bound_to(self, project_name: str, instance_key: str, turn_message_id: str) -> bool:
        """True when a preview is bound and belongs to the turn started by `turn_message_id`."""
        state = self._states.get(state_key(project_name, instance_key))
        return state is not None and state.turn_message_id == turn_message_id

    def reset(self) -> None:
        for key in list(self._states):
            self._timers.cancel(key, TIMER_STREAM_FLUSH)
        self._states.clear()


def render_preview(buffer: list[str]) -> str:
    """Last few buffered lines, or the placeholder when nothing was buffered."""
    lines = [line for line in buffer if line.strip()][-STREAMING_PREVIEW_LINES:]
    return "\n".join(lines) if lines else STREAMING_PLACEHOLDER
