"""Pending turn tracking: one entry per (project, instance).

A turn opens when a user message is routed to an agent (`mark_pending`) or
when the agent starts working on its own (`ensure_pending`). It closes with
`mark_completed` or `mark_error`, which swap the reaction on the origin
message. Read the entry with `get_pending` before closing it if you still
need its `start_message_id`.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Optional

from structlog import get_logger

from chatbridge.constants import (
    REACTION_FAILURE,
    REACTION_SUCCESS,
    REACTION_WORKING,
    START_MESSAGE_PREFIX,
    START_PREVIEW_MAX_CHARS,
)
from chatbridge.core.models import PendingEntry, state_key
from chatbridge.core.protocols import MessagingClient
from chatbridge.utils import collapse_whitespace, truncate

logger = get_logger(__name__)


def format_start_message(agent_type: str, prompt_preview: Optional[str] = None) -> str:
    """Status message text: the prompt preview when known, else the agent type."""
    normalized = collapse_whitespace(prompt_preview or "")
    if normalized:
        return f"{START_MESSAGE_PREFIX}: {truncate(normalized, START_PREVIEW_MAX_CHARS)}"
    agent_suffix = f" ({agent_type})" if agent_type else ""
    return f"{START_MESSAGE_PREFIX}{agent_suffix}"


class PendingTracker:
    """Tracks the in-flight turn per (project, instance) and its reactions.

    Reaction and message calls are best-effort: platform failures are logged
    and never propagate.
    """

    def __init__(self, messaging: MessagingClient) -> None:
        self._messaging = messaging
        self._entries: dict[str, PendingEntry] = {}

    @staticmethod
    def _key(project_name: str, agent_type: str, instance_id: Optional[str]) -> str:
        return state_key(project_name, instance_id or agent_type)

    async def mark_pending(
        self,
        project_name: str,
        agent_type: str,
        channel_id: str,
        origin_message_id: str,
        instance_id: Optional[str] = None,
    ) -> None:
        """Open a turn for a user message, replacing any previous entry."""
        key = self._key(project_name, agent_type, instance_id)
        self._entries[key] = PendingEntry(channel_id=channel_id, origin_message_id=origin_message_id)
        try:
            await self._messaging.add_reaction(channel_id, origin_message_id, REACTION_WORKING)
        except Exception:
            logger.warning("Failed to add working reaction for %s", key, exc_info=True)

    async def ensure_pending(
        self,
        project_name: str,
        agent_type: str,
        channel_id: str,
        instance_id: Optional[str] = None,
    ) -> None:
        """Open a turn without an origin message, unless one is already open."""
        key = self._key(project_name, agent_type, instance_id)
        if key in self._entries:
            return
        self._entries[key] = PendingEntry(channel_id=channel_id)
        logger.debug("Opened agent-originated turn for %s", key)

    async def ensure_start_message(
        self,
        project_name: str,
        agent_type: str,
        instance_id: Optional[str] = None,
        prompt_preview: Optional[str] = None,
    ) -> Optional[str]:
        """Post the status message once and return its id on every call.

        Returns:
            start_message_id, or None without an open turn or when posting failed
        """
        entry = self._entries.get(self._key(project_name, agent_type, instance_id))
        if entry is None:
            return None
        if entry.start_message_id:
            return entry.start_message_id

        try:
            entry.start_message_id = await self._messaging.send_to_channel_with_id(
                entry.channel_id, format_start_message(agent_type, prompt_preview)
            )
        except Exception:
            logger.warning("Failed to post start message for %s/%s", project_name, instance_id or agent_type, exc_info=True)
        return entry.start_message_id

    def has_pending(self, project_name: str, agent_type: str, instance_id: Optional[str] = None) -> bool:
        return self._key(project_name, agent_type, instance_id) in self._entries

    def get_pending(self, project_name: str, agent_type: str, instance_id: Optional[str] = None) -> Optional[PendingEntry]:
        """Copy of the live entry (mutating it does not affect the tracker)."""
        entry = self._entries.get(self._key(project_name, agent_type, instance_id))
        return replace(entry) if entry else None

    async def mark_completed(self, project_name: str, agent_type: str, instance_id: Optional[str] = None) -> None:
        await self._close(project_name, agent_type, instance_id, REACTION_SUCCESS)

    async def mark_error(self, project_name: str, agent_type: str, instance_id: Optional[str] = None) -> None:
        await self._close(project_name, agent_type, instance_id, REACTION_FAILURE)

    async def _close(self, project_name: str, agent_type: str, instance_id: Optional[str], reaction: str) -> None:
        key = self._key(project_name, agent_type, instance_id)
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        logger.debug("Closed turn for %s (%s)", key, reaction)
        if not entry.origin_message_id:
            return
        try:
            await self._messaging.replace_own_reaction(
                entry.channel_id, entry.origin_message_id, REACTION_WORKING, reaction
            )
        except Exception:
            logger.warning("Failed to swap reaction for %s", key, exc_info=True)

    def set_hook_active(self, project_name: str, agent_type: str, instance_id: Optional[str] = None) -> None:
        entry = self._entries.get(self._key(project_name, agent_type, instance_id))
        if entry:
            entry.hook_active = True

    def clear_hook_active(self, project_name: str, agent_type: str, instance_id: Optional[str] = None) -> None:
        entry = self._entries.get(self._key(project_name, agent_type, instance_id))
        if entry:
            entry.hook_active = False

    def is_hook_active(self, project_name: str, agent_type: str, instance_id: Optional[str] = None) -> bool:
        entry = self._entries.get(self._key(project_name, agent_type, instance_id))
        return bool(entry and entry.hook_active)

    def reset(self) -> None:
        """Drop every tracked turn (daemon restart semantics, tests)."""
        self._entries.clear()
