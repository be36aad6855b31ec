"""Event pipeline: resolves hook events and renders them into chat operations.

One event is handled at a time per (project, instance). The pipeline owns the
thinking and session-lifecycle timers; the per-turn accumulation state lives
in ThreadActivity and StructuredHandlers.
"""

from __future__ import annotations

import asyncio
import os
from typing import Awaitable, Callable, Mapping, Optional

from structlog import get_logger

from chatbridge.constants import (
    AUTO_PENDING_EVENTS,
    ELICITATION_DIALOG,
    ERROR_CONTEXT_LINES,
    NOTIFICATION_DEFAULT_ICON,
    NOTIFICATION_ICONS,
    REACTION_SUCCESS,
    REACTION_THINKING,
    STREAMING_PLACEHOLDER,
    THINKING_REPORT_MIN_S,
    TIMER_LIFECYCLE,
    TIMER_THINKING,
    HookEvents,
)
from chatbridge.core.idle_response import IdleResponder, build_finalize_header
from chatbridge.core.keyed_state import KeyedLocks, TimerSlots
from chatbridge.core.models import EventContext
from chatbridge.core.pending_tracker import PendingTracker
from chatbridge.core.protocols import MessagingClient, ProjectRegistry
from chatbridge.core.streaming_updater import StreamingUpdater
from chatbridge.core.structured_handlers import StructuredHandlers
from chatbridge.core.thread_activity import ThreadActivity
from chatbridge.utils import truncate

logger = get_logger(__name__)

EventHandler = Callable[[EventContext], Awaitable[None]]


class ChatBridgeError(Exception):
    """Base error for chatbridge."""


class UnknownProjectError(ChatBridgeError):
    """Raised when an event names a project the registry does not know."""

    def __init__(self, project_name: str) -> None:
        super().__init__(f"unknown project: {project_name}")
        self.project_name = project_name


def event_text(event: Mapping[str, object]) -> Optional[str]:
    """`text` if non-blank, else `message` if non-blank, else None."""
    for name in ("text", "message"):
        value = event.get(name)
        if isinstance(value, str) and value.strip():
            return value
    return None


class EventPipeline:
    """Dispatches hook events by type under the per-key lock.

    Every handler catches its own delivery failures; only an unknown project
    escapes `handle_event`.
    """

    def __init__(
        self,
        *,
        messaging: MessagingClient,
        registry: ProjectRegistry,
        tracker: PendingTracker,
        streaming: StreamingUpdater,
        threads: ThreadActivity,
        structured: StructuredHandlers,
        idle: IdleResponder,
        timers: TimerSlots,
        locks: KeyedLocks,
        lifecycle_delay_s: float = 5.0,
        thinking_interval_s: float = 10.0,
    ) -> None:
        self._messaging = messaging
        self._registry = registry
        self._tracker = tracker
        self._streaming = streaming
        self._threads = threads
        self._structured = structured
        self._idle = idle
        self._timers = timers
        self._locks = locks
        self._lifecycle_delay_s = lifecycle_delay_s
        self._thinking_interval_s = thinking_interval_s
        self._thinking_started: dict[str, float] = {}

        self._handlers: dict[str, EventHandler] = {
            HookEvents.SESSION_START: self._on_session_start,
            HookEvents.SESSION_IDLE: self._on_session_idle,
            HookEvents.SESSION_ERROR: self._on_session_error,
            HookEvents.SESSION_NOTIFICATION: self._on_session_notification,
            HookEvents.SESSION_END: self._on_session_end,
            HookEvents.THINKING_START: self._on_thinking_start,
            HookEvents.THINKING_STOP: self._on_thinking_stop,
            HookEvents.TOOL_ACTIVITY: self._on_tool_activity,
            HookEvents.TOOL_FAILURE: self._on_tool_failure,
            HookEvents.PROMPT_SUBMIT: self._on_prompt_submit,
            HookEvents.TASK_COMPLETED: self._on_task_completed,
            HookEvents.PERMISSION_REQUEST: self._on_permission_request,
        }

    async def handle_event(self, event: Mapping[str, object]) -> bool:
        """Resolve and dispatch one event.

        Args:
            event: Hook payload with `projectName` and `type`

        Returns:
            False when the event was dropped (unknown instance or channel)

        Raises:
            UnknownProjectError: projectName is not registered
        """
        project_name = event.get("projectName")
        if not isinstance(project_name, str) or not self._registry.has_project(project_name):
            raise UnknownProjectError(str(project_name))

        agent_type = event.get("agentType")
        instance_id = event.get("instanceId")
        event_type = event.get("type")
        resolved = self._registry.resolve(
            project_name,
            agent_type if isinstance(agent_type, str) and agent_type else None,
            instance_id if isinstance(instance_id, str) and instance_id else None,
        )
        if resolved is None or not resolved.channel_id:
            logger.warning(
                "No channel for %s/%s%s (instance %s)",
                project_name,
                agent_type or "?",
                f"#{instance_id}" if instance_id else "",
                "found but missing channel" if resolved else "not found",
            )
            return False

        text = event_text(event)
        logger.info(
            "[%s/%s] event=%s text=%s",
            project_name,
            resolved.instance_key,
            event_type,
            f"({len(text)} chars) {truncate(text, 80)}" if text else "(empty)",
        )

        handler = self._handlers.get(event_type) if isinstance(event_type, str) else None
        if handler is None:
            logger.debug("Ignoring unrecognized event type %r", event_type)
            return True

        ctx = EventContext(
            event=event,
            event_type=str(event_type),
            project_name=project_name,
            channel_id=resolved.channel_id,
            agent_type=resolved.agent_type,
            instance_id=resolved.instance_id,
            text=text,
            project_path=os.path.abspath(resolved.project_path) if resolved.project_path else "",
        )

        async with self._locks.hold(ctx.key):
            if event_type in AUTO_PENDING_EVENTS:
                await self._tracker.ensure_pending(project_name, ctx.agent_type, ctx.channel_id, ctx.instance_id)
            ctx.pending = self._tracker.get_pending(project_name, ctx.agent_type, ctx.instance_id)
            try:
                await handler(ctx)
            except Exception:
                logger.error("Handler for %s failed on %s", event_type, ctx.key, exc_info=True)
        return True

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def _ensure_start_and_streaming(self, ctx: EventContext) -> Optional[str]:
        """Post the start message if needed and bind a streaming preview.

        The preview is a separate "⏳ Working..." message so the start message
        keeps the prompt; the start message is reused if that post fails.
        """
        submitted = ctx.get_str("submittedPrompt") or None
        start_id = await self._tracker.ensure_start_message(
            ctx.project_name, ctx.agent_type, ctx.instance_id, prompt_preview=submitted
        )
        if not start_id:
            return None
        if ctx.pending is not None:
            ctx.pending.start_message_id = start_id

        bound = self._streaming.is_bound_to(ctx.project_name, ctx.instance_key, start_id)
        if self._streaming.can_stream() and not bound:
            if self._streaming.has(ctx.project_name, ctx.instance_key):
                logger.debug("Preview for %s belongs to an earlier turn; rebinding", ctx.key)
                self._streaming.discard(ctx.project_name, ctx.instance_key)

            pending = self._tracker.get_pending(ctx.project_name, ctx.agent_type, ctx.instance_id)
            if pending is not None:
                stream_id = start_id
                try:
                    new_id = await self._messaging.send_to_channel_with_id(pending.channel_id, STREAMING_PLACEHOLDER)
                    if new_id:
                        stream_id = new_id
                except Exception:
                    logger.warning("Failed to post streaming preview for %s; reusing start message", ctx.key, exc_info=True)
                self._streaming.start(
                    ctx.project_name, ctx.instance_key, pending.channel_id, stream_id, turn_message_id=start_id
                )
        return start_id

    def _cancel_thinking(self, key: str) -> None:
        self._timers.cancel(key, TIMER_THINKING)
        self._thinking_started.pop(key, None)

    def _cancel_lifecycle(self, key: str) -> None:
        self._timers.cancel(key, TIMER_LIFECYCLE)

    def _clear_turn_state(self, key: str) -> None:
        self._threads.clear(key)
        self._structured.clear(key)

    async def _send(self, ctx: EventContext, text: str, what: str) -> None:
        try:
            await self._idle.send_split(ctx.channel_id, text)
        except Exception:
            logger.warning("Failed to send %s for %s", what, ctx.key, exc_info=True)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def _on_session_start(self, ctx: EventContext) -> None:
        source = ctx.get_str("source") or "unknown"
        if source == "startup":
            return

        model = ctx.get_str("model")
        await self._send(ctx, f"▶️ Session started ({source}{f', {model}' if model else ''})", "session start")
        self._tracker.set_hook_active(ctx.project_name, ctx.agent_type, ctx.instance_id)

        project_name, agent_type, instance_id, key = ctx.project_name, ctx.agent_type, ctx.instance_id, ctx.key

        async def resolve_silent_turn() -> None:
            async with self._locks.hold(key):
                pending = self._tracker.get_pending(project_name, agent_type, instance_id)
                if pending is not None and not pending.start_message_id:
                    logger.info("Auto-resolving %s: no activity after session start", key)
                    await self._tracker.mark_completed(project_name, agent_type, instance_id)

        self._timers.arm(key, TIMER_LIFECYCLE, self._lifecycle_delay_s, resolve_silent_turn)

    async def _on_session_end(self, ctx: EventContext) -> None:
        self._tracker.clear_hook_active(ctx.project_name, ctx.agent_type, ctx.instance_id)
        self._timers.cancel_key(ctx.key)
        self._thinking_started.pop(ctx.key, None)
        await self._send(ctx, f"Session ended: {ctx.get_str('reason') or 'unknown'}", "session end")

    async def _on_session_notification(self, ctx: EventContext) -> None:
        notification_type = ctx.get_str("notificationType")
        icon = NOTIFICATION_ICONS.get(notification_type, NOTIFICATION_DEFAULT_ICON)
        body = ctx.text or notification_type or "unknown"
        await self._send(ctx, f"{icon} {body}", "notification")

        # the interactive question UI that follows an elicitation carries the prompt
        if notification_type == ELICITATION_DIALOG:
            return
        prompt_text = ctx.get_str("promptText")
        if prompt_text:
            await self._send(ctx, prompt_text, "notification prompt")

    async def _on_permission_request(self, ctx: EventContext) -> None:
        tool_name = ctx.get_str("toolName") or "tool"
        message = f"🔐 Permission requested: {tool_name}"
        if ctx.text:
            message += f"\n{ctx.text.strip()}"
        await self._send(ctx, message, "permission request")

    # ------------------------------------------------------------------
    # Thinking
    # ------------------------------------------------------------------

    async def _on_thinking_start(self, ctx: EventContext) -> None:
        self._cancel_lifecycle(ctx.key)
        await self._tracker.ensure_pending(ctx.project_name, ctx.agent_type, ctx.channel_id, ctx.instance_id)
        if ctx.pending is None:
            ctx.pending = self._tracker.get_pending(ctx.project_name, ctx.agent_type, ctx.instance_id)
        await self._ensure_start_and_streaming(ctx)

        pending = ctx.pending
        if pending is not None and pending.origin_message_id:
            try:
                await self._messaging.add_reaction(pending.channel_id, pending.origin_message_id, REACTION_THINKING)
            except Exception:
                logger.warning("Failed to add thinking reaction for %s", ctx.key, exc_info=True)

        self._cancel_thinking(ctx.key)
        project_name, instance_key, key = ctx.project_name, ctx.instance_key, ctx.key
        started = asyncio.get_running_loop().time()
        self._thinking_started[key] = started
        self._streaming.append(project_name, instance_key, "🧠 Thinking…")

        async def report_elapsed() -> None:
            async with self._locks.hold(key):
                elapsed = round(asyncio.get_running_loop().time() - started)
                self._streaming.append(project_name, instance_key, f"🧠 Thinking… ({elapsed}s)")

        self._timers.arm(
            key, TIMER_THINKING, self._thinking_interval_s, report_elapsed, interval_s=self._thinking_interval_s
        )

    async def _on_thinking_stop(self, ctx: EventContext) -> None:
        started = self._thinking_started.get(ctx.key)
        if started is not None:
            elapsed = round(asyncio.get_running_loop().time() - started)
            if elapsed >= THINKING_REPORT_MIN_S:
                self._streaming.append(ctx.project_name, ctx.instance_key, f"🧠 Thought for {elapsed}s")
        self._cancel_thinking(ctx.key)

        pending = ctx.pending
        if pending is not None and pending.origin_message_id:
            try:
                await self._messaging.replace_own_reaction(
                    pending.channel_id, pending.origin_message_id, REACTION_THINKING, REACTION_SUCCESS
                )
            except Exception:
                logger.warning("Failed to swap thinking reaction for %s", ctx.key, exc_info=True)

    # ------------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------------

    async def _on_prompt_submit(self, ctx: EventContext) -> None:
        self._cancel_lifecycle(ctx.key)
        await self._ensure_start_and_streaming(ctx)

    async def _on_tool_activity(self, ctx: EventContext) -> None:
        self._cancel_lifecycle(ctx.key)
        start_id = await self._ensure_start_and_streaming(ctx)

        if await self._structured.handle(ctx, start_id):
            return
        if not ctx.text:
            return
        self._streaming.append(ctx.project_name, ctx.instance_key, ctx.text)
        await self._threads.accumulate(ctx.key, ctx.channel_id, start_id, ctx.text)

    async def _on_tool_failure(self, ctx: EventContext) -> None:
        self._cancel_lifecycle(ctx.key)
        await self._tracker.ensure_pending(ctx.project_name, ctx.agent_type, ctx.channel_id, ctx.instance_id)
        if ctx.pending is None:
            ctx.pending = self._tracker.get_pending(ctx.project_name, ctx.agent_type, ctx.instance_id)
        start_id = await self._ensure_start_and_streaming(ctx)

        tool_name = ctx.get_str("toolName") or "tool"
        detail = ctx.get_str("error") or (ctx.text or "").strip() or "unknown error"
        line = f"⚠️ {tool_name} failed: {detail}"
        self._streaming.append(ctx.project_name, ctx.instance_key, line)
        await self._threads.accumulate(ctx.key, ctx.channel_id, start_id, line)

    async def _on_task_completed(self, ctx: EventContext) -> None:
        task_id = ctx.event.get("taskId")
        if task_id is None or task_id == "":
            return
        await self._structured.mark_task_completed(ctx, task_id)

    # ------------------------------------------------------------------
    # Turn boundaries
    # ------------------------------------------------------------------

    async def _on_session_idle(self, ctx: EventContext) -> None:
        self._cancel_thinking(ctx.key)
        self._cancel_lifecycle(ctx.key)

        # read before mark_completed clears the entry
        live = self._tracker.get_pending(ctx.project_name, ctx.agent_type, ctx.instance_id)
        start_id = live.start_message_id if live else None
        self._clear_turn_state(ctx.key)

        await self._idle.deliver(ctx, start_id)

        if start_id:
            header = build_finalize_header(ctx.event.get("usage"))
            await self._streaming.finalize(
                ctx.project_name, ctx.instance_key, header, expected_turn_message_id=start_id
            )
        await self._tracker.mark_completed(ctx.project_name, ctx.agent_type, ctx.instance_id)

    async def _on_session_error(self, ctx: EventContext) -> None:
        self._cancel_thinking(ctx.key)
        self._cancel_lifecycle(ctx.key)

        recent = self._threads.recent_lines(ctx.key, ERROR_CONTEXT_LINES)
        self._clear_turn_state(ctx.key)
        self._streaming.discard(ctx.project_name, ctx.instance_key)

        message = f"⚠️ Session error: {(ctx.text or '').strip() or 'unknown error'}"
        if recent:
            message += "\n\nRecent activity:\n" + "\n".join(recent)
        await self._send(ctx, message, "session error")
        await self._tracker.mark_error(ctx.project_name, ctx.agent_type, ctx.instance_id)

    def reset(self) -> None:
        self._thinking_started.clear()
