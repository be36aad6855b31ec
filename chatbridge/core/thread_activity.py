"""Thread accumulation: activity lines collected into one thread reply per turn.

The first line of a turn creates a reply under the turn's start message;
later lines edit that reply to the full newline-joined list. State is only
trusted while its parent matches the current start message.
"""

from __future__ import annotations

from typing import Optional

from structlog import get_logger

from chatbridge.core.models import ThreadActivityState
from chatbridge.core.protocols import MessagingClient, ThreadMessaging

logger = get_logger(__name__)


class ThreadActivity:
    def __init__(self, messaging: MessagingClient, threads: Optional[ThreadMessaging]) -> None:
        self._messaging = messaging
        self._threads = threads
        self._states: dict[str, ThreadActivityState] = {}

    async def accumulate(self, key: str, channel_id: str, start_message_id: Optional[str], text: str) -> None:
        """Add one activity line to the turn's thread reply.

        Args:
            key: State key ("<project>:<instance>")
            channel_id: Channel holding the start message
            start_message_id: The current turn's start message (skipped when None)
            text: Activity line
        """
        if self._threads is None or not start_message_id or not text:
            return

        state = self._states.get(key)
        if state is not None and state.parent_message_id == start_message_id:
            state.lines.append(text)
            try:
                await self._messaging.update_message(state.channel_id, state.thread_message_id, "\n".join(state.lines))
            except Exception:
                # lines stay buffered; the next update carries them
                logger.warning("Failed to update thread activity for %s", key, exc_info=True)
            return

        self._states.pop(key, None)
        try:
            message_id = await self._threads.reply_in_thread_with_id(channel_id, start_message_id, text)
        except Exception:
            logger.warning("Failed to post thread activity for %s", key, exc_info=True)
            return
        if not message_id:
            logger.debug("Thread reply for %s returned no id; next activity retries", key)
            return
        self._states[key] = ThreadActivityState(
            channel_id=channel_id,
            parent_message_id=start_message_id,
            thread_message_id=message_id,
            lines=[text],
        )

    def recent_lines(self, key: str, count: int) -> list[str]:
        state = self._states.get(key)
        return list(state.lines[-count:]) if state else []

    def get(self, key: str) -> Optional[ThreadActivityState]:
        return self._states.get(key)

    def clear(self, key: str) -> None:
        self._states.pop(key, None)

    def reset(self) -> None:
        self._states.clear()
