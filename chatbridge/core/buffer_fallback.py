"""Buffer fallback: infer a finished turn from terminal output.

Used for agents without hooks. After a message is typed into the agent's
window the poller captures the screen, extracts the block after the last
prompt marker and waits for it to hold still across two checks. A stable,
non-idle block is posted as the turn's response.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence

from structlog import get_logger

from chatbridge.config import FallbackSettings
from chatbridge.constants import TIMER_FALLBACK
from chatbridge.core.keyed_state import KeyedLocks, TimerSlots
from chatbridge.core.models import state_key
from chatbridge.core.pending_tracker import PendingTracker
from chatbridge.core.protocols import MessagingClient, TerminalCapture
from chatbridge.utils import clean_capture, max_message_chars, split_message

logger = get_logger(__name__)

SEPARATOR_CHARS = "─━—–-=═╌╍┄┅┈┉"
_SEPARATOR_RE = re.compile(f"[{re.escape(SEPARATOR_CHARS)}]")
IDLE_MENU_MAX_LINES = 3
DELIVERY_FAILED_TEXT = "Could not deliver agent output. Check logs for details."


def prompt_marker_pattern(markers: Sequence[str]) -> re.Pattern[str]:
    """Regex matching a line that starts with a prompt marker ("❯ fix it", "›")."""
    alternatives = "|".join(re.escape(marker) for marker in markers)
    return re.compile(rf"^(?:{alternatives})(?:\s|$)")


DEFAULT_PROMPT_RE = prompt_marker_pattern(FallbackSettings().prompt_markers)


def _trim_trailing_blank(lines: list[str]) -> list[str]:
    while lines and not lines[-1].strip():
        lines.pop()
    return lines


def extract_last_command_block(text: str, prompt_re: re.Pattern[str] = DEFAULT_PROMPT_RE) -> str:
    """Text from the last prompt-marker line to the end (whole text without a marker)."""
    lines = text.split("\n")
    for index in range(len(lines) - 1, -1, -1):
        if prompt_re.match(lines[index]):
            return "\n".join(_trim_trailing_blank(lines[index:]))
    return "\n".join(_trim_trailing_blank(lines))


def is_separator(line: str) -> bool:
    """True for box-drawing rules ("────", "═══", "- - -")."""
    trimmed = line.strip()
    if not trimmed:
        return False
    remainder = _SEPARATOR_RE.sub("", trimmed).replace(" ", "")
    return not remainder or len(remainder) / len(trimmed) < 0.1


def is_idle_block(block: str, prompt_re: re.Pattern[str] = DEFAULT_PROMPT_RE) -> bool:
    """Classify a command block as an idle prompt or menu.

    Idle blocks are empty, a bare prompt line, or a prompt line followed by a
    separator and at most IDLE_MENU_MAX_LINES further lines (the agent's
    input box with its hint lines).
    """
    lines = _trim_trailing_blank(block.split("\n"))
    if not any(line.strip() for line in lines):
        return True
    if not prompt_re.match(lines[0]):
        return False

    rest = [line for line in lines[1:] if line.strip()]
    if not rest:
        return True
    if not is_separator(rest[0]):
        return False
    substantive = [line for line in rest[1:] if not is_separator(line)]
    return len(substantive) <= IDLE_MENU_MAX_LINES


@dataclass
class _FallbackRun:
    """Progress of one scheduled fallback."""

    session_name: str
    window_name: str
    project_name: str
    agent_type: str
    instance_id: Optional[str]
    channel_id: str
    attempts: int = 0
    last_block: Optional[str] = None

    @property
    def key(self) -> str:
        return state_key(self.project_name, self.instance_id or self.agent_type)


class BufferFallbackPoller:
    """Resolves hookless turns by polling the agent's terminal.

    Each check runs under the per-key lock and aborts as soon as the turn is
    resolved or a hook stream is active.
    """

    def __init__(
        self,
        messaging: MessagingClient,
        capture: TerminalCapture,
        tracker: PendingTracker,
        timers: TimerSlots,
        locks: KeyedLocks,
        settings: Optional[FallbackSettings] = None,
    ) -> None:
        self._messaging = messaging
        self._capture = capture
        self._tracker = tracker
        self._timers = timers
        self._locks = locks
        self._settings = settings or FallbackSettings()
        self._prompt_re = prompt_marker_pattern(self._settings.prompt_markers)

    def schedule(
        self,
        session_name: str,
        window_name: str,
        project_name: str,
        agent_type: str,
        instance_id: Optional[str],
        channel_id: str,
    ) -> None:
        """Arm the fallback for one instance, replacing any run in progress."""
        run = _FallbackRun(
            session_name=session_name,
            window_name=window_name,
            project_name=project_name,
            agent_type=agent_type,
            instance_id=instance_id,
            channel_id=channel_id,
        )
        self._timers.arm(run.key, TIMER_FALLBACK, self._settings.initial_delay_s, lambda: self._check(run))

    def cancel(self, project_name: str, agent_type: str, instance_id: Optional[str] = None) -> None:
        self._timers.cancel(state_key(project_name, instance_id or agent_type), TIMER_FALLBACK)

    async def _check(self, run: _FallbackRun) -> None:
        async with self._locks.hold(run.key):
            run.attempts += 1
            if not self._tracker.has_pending(run.project_name, run.agent_type, run.instance_id):
                logger.debug("Fallback %s check #%d: turn already resolved", run.key, run.attempts)
                return
            if self._tracker.is_hook_active(run.project_name, run.agent_type, run.instance_id):
                logger.debug("Fallback %s: hook events active, deferring", run.key)
                return

            snapshot = await self.capture_text(run.session_name, run.window_name)
            if not snapshot:
                logger.debug("Fallback %s check #%d: nothing captured", run.key, run.attempts)
                return

            block = extract_last_command_block(snapshot, self._prompt_re)
            if is_idle_block(block, self._prompt_re):
                logger.debug("Fallback %s check #%d: idle prompt on screen", run.key, run.attempts)
                self._rearm(run)
                return

            if block == run.last_block:
                await self._deliver(run, block)
                return

            logger.debug("Fallback %s check #%d: output changed (%d chars)", run.key, run.attempts, len(block))
            run.last_block = block
            self._rearm(run)

    def _rearm(self, run: _FallbackRun) -> None:
        if run.attempts >= self._settings.max_checks:
            logger.info("Fallback %s: giving up after %d checks", run.key, run.attempts)
            return
        self._timers.arm(run.key, TIMER_FALLBACK, self._settings.stable_check_s, lambda: self._check(run))

    async def _deliver(self, run: _FallbackRun, block: str) -> None:
        limit = max_message_chars(self._messaging.platform) - len("```\n\n```")
        chunks = split_message(block, limit)
        logger.info("Fallback %s: output stable (%d chars, %d messages), delivering", run.key, len(block), len(chunks))
        try:
            for chunk in chunks:
                await self._messaging.send_to_channel(run.channel_id, f"```\n{chunk}\n```")
        except Exception:
            logger.warning("Fallback %s: delivery failed", run.key, exc_info=True)
            try:
                await self._messaging.send_to_channel(run.channel_id, DELIVERY_FAILED_TEXT)
            except Exception:
                logger.warning("Fallback %s: failure notice not delivered", run.key, exc_info=True)
            return
        await self._tracker.mark_completed(run.project_name, run.agent_type, run.instance_id)

    async def capture_text(self, session_name: str, window_name: str) -> Optional[str]:
        """Rendered frame text, else the cleaned raw buffer, else None."""
        try:
            frame = await self._capture.get_window_frame(session_name, window_name)
            if frame is not None:
                text = frame.to_text()
                if text.strip():
                    return text
        except Exception:
            logger.debug("Frame capture failed for %s:%s", session_name, window_name, exc_info=True)

        try:
            raw = await self._capture.get_window_buffer(session_name, window_name)
        except Exception:
            logger.debug("Buffer capture failed for %s:%s", session_name, window_name, exc_info=True)
            return None
        if not raw:
            return None
        text = clean_capture(raw)
        return text if text.strip() else None
