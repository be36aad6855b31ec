"""Protocol definitions for the collaborators the orchestrator consumes.

Messaging is split into a required base protocol and an optional thread
extension. Clients advertise capabilities through the `supports_edits` and
`supports_threads` flags; the orchestrator reads them once at construction.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol, Sequence

from chatbridge.core.models import InteractiveQuestion, ResolvedInstance, TerminalFrame


class MessagingClient(Protocol):
    """Chat platform client (Slack, Discord, Telegram adapters implement this).

    Every method may raise; callers treat failures as non-fatal.
    """

    platform: str
    supports_edits: bool
    supports_threads: bool

    async def send_to_channel(self, channel_id: str, text: str) -> None:
        """Post a message to a channel."""
        ...

    async def send_to_channel_with_id(self, channel_id: str, text: str) -> Optional[str]:
        """Post a message and return its platform id (None if the platform gave none)."""
        ...

    async def send_to_channel_with_files(self, channel_id: str, caption: str, file_paths: Sequence[str]) -> None:
        """Post local files with an optional caption."""
        ...

    async def add_reaction(self, channel_id: str, message_id: str, emoji: str) -> None:
        """Add a reaction to a message."""
        ...

    async def replace_own_reaction(self, channel_id: str, message_id: str, from_emoji: str, to_emoji: str) -> None:
        """Swap one of the bot's own reactions for another."""
        ...

    async def update_message(self, channel_id: str, message_id: str, text: str) -> None:
        """Edit a previously posted message."""
        ...

    async def send_interactive_questions(
        self, channel_id: str, questions: Sequence[InteractiveQuestion]
    ) -> Optional[str]:
        """Render questions with selectable options; return the chosen label or None on timeout."""
        ...


class ThreadMessaging(Protocol):
    """Optional thread-reply extension of MessagingClient."""

    async def reply_in_thread(self, channel_id: str, parent_message_id: str, text: str) -> None:
        """Post a reply under a parent message."""
        ...

    async def reply_in_thread_with_id(self, channel_id: str, parent_message_id: str, text: str) -> Optional[str]:
        """Post a thread reply and return its id (None if the platform gave none)."""
        ...


class FileSideChannel(Protocol):
    """Extracts deliverable file paths embedded in agent response text."""

    def extract(self, text: str, project_path: str) -> tuple[str, list[str]]:
        """Return (display text with paths stripped, paths to attach)."""
        ...


class TerminalCapture(Protocol):
    """Read-only access to an agent's terminal window."""

    async def get_window_frame(self, session_name: str, window_name: str) -> Optional[TerminalFrame]:
        """Structured capture of the rendered screen, None if unsupported."""
        ...

    async def get_window_buffer(self, session_name: str, window_name: str) -> Optional[str]:
        """Raw scrollback text (may contain ANSI codes), None if unavailable."""
        ...


class ProjectRegistry(Protocol):
    """Resolves projects and agent instances to chat channels and terminal windows."""

    def has_project(self, project_name: str) -> bool:
        """True if the project is known."""
        ...

    def resolve(
        self, project_name: str, agent_type: Optional[str], instance_id: Optional[str]
    ) -> Optional[ResolvedInstance]:
        """Resolve an instance (by id first, else primary instance for the agent type)."""
        ...


# Receives the option picked in an interactive question: (project, instance key, selection)
AnswerSink = Callable[[str, str, str], Awaitable[None]]
