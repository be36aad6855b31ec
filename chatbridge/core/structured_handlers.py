"""Handlers for structured markers embedded in tool activity text.

Hooks encode richer events as `<TAG>:<json>` inside a plain activity line:

    TASK_CREATE:{"subject": "Write tests"}
    TASK_UPDATE:{"taskId": "1", "status": "completed"}
    GIT_COMMIT:{"hash": "abc1234", "message": "fix bug", "stat": "1 file changed"}
    GIT_PUSH:{"toHash": "abc1234def", "remoteRef": "origin/main"}
    SUBAGENT_DONE:{"subagentType": "Explore", "summary": "Found 3 call sites"}

A malformed payload is dropped with a debug log; it never reaches the chat.
"""

from __future__ import annotations

import json
from typing import Optional

from structlog import get_logger

from chatbridge.constants import TASK_STATUS_GLYPHS
from chatbridge.core.models import TASK_STATUSES, EventContext, TaskChecklist
from chatbridge.core.protocols import MessagingClient, ThreadMessaging
from chatbridge.core.streaming_updater import StreamingUpdater

logger = get_logger(__name__)

TASK_CREATE = "TASK_CREATE:"
TASK_UPDATE = "TASK_UPDATE:"
GIT_COMMIT = "GIT_COMMIT:"
GIT_PUSH = "GIT_PUSH:"
SUBAGENT_DONE = "SUBAGENT_DONE:"

STRUCTURED_PREFIXES = (TASK_CREATE, TASK_UPDATE, GIT_COMMIT, GIT_PUSH, SUBAGENT_DONE)


def is_structured(text: Optional[str]) -> bool:
    return bool(text) and text.startswith(STRUCTURED_PREFIXES)  # type: ignore[union-attr]


def parse_payload(text: str, prefix: str) -> Optional[dict[str, object]]:
    """Decode the JSON object after `prefix`, None when malformed."""
    try:
        data = json.loads(text[len(prefix) :])
    except (json.JSONDecodeError, ValueError):
        logger.debug("Malformed %s payload", prefix.rstrip(":"))
        return None
    if not isinstance(data, dict):
        logger.debug("Non-object %s payload", prefix.rstrip(":"))
        return None
    return data


def _str_field(data: dict[str, object], name: str) -> str:
    value = data.get(name)
    return value.strip() if isinstance(value, str) else ""


def render_checklist(checklist: TaskChecklist) -> str:
    header = f"📋 Task list ({checklist.completed_count}/{len(checklist.tasks)})"
    lines = [f"{TASK_STATUS_GLYPHS.get(task.status, TASK_STATUS_GLYPHS['pending'])} #{task.id} {task.subject}" for task in checklist.tasks]
    return "\n".join([header, *lines])


def format_git_commit(data: dict[str, object]) -> Optional[str]:
    message = _str_field(data, "message")
    if not message:
        return None
    line = f'Committed: "{message}"'
    stat = _str_field(data, "stat")
    if stat:
        line += f"\n{stat}"
    return line


def format_git_push(data: dict[str, object]) -> Optional[str]:
    to_hash = _str_field(data, "toHash")
    if not to_hash:
        return None
    remote_ref = _str_field(data, "remoteRef") or "remote"
    return f"Pushed to {remote_ref} ({to_hash[:7]})"


def format_subagent_done(data: dict[str, object]) -> Optional[str]:
    summary = _str_field(data, "summary")
    if not summary:
        return None
    agent = _str_field(data, "subagentType") or "agent"
    return f"{agent} done: {summary}"


class StructuredHandlers:
    """Routes structured activity markers and owns the per-turn task checklists.

    Rendered output goes to a thread reply under the turn's start message when
    the platform has threads, else to the channel.
    """

    def __init__(
        self,
        messaging: MessagingClient,
        threads: Optional[ThreadMessaging],
        streaming: StreamingUpdater,
    ) -> None:
        self._messaging = messaging
        self._threads = threads
        self._streaming = streaming
        self._checklists: dict[str, TaskChecklist] = {}

    async def handle(self, ctx: EventContext, start_message_id: Optional[str]) -> bool:
        """Handle ctx.text if it carries a structured marker.

        Returns:
            True when the text was a structured marker (handled or dropped)
        """
        text = ctx.text or ""
        if text.startswith((TASK_CREATE, TASK_UPDATE)):
            await self._handle_task(ctx, start_message_id, text)
        elif text.startswith(GIT_COMMIT):
            data = parse_payload(text, GIT_COMMIT)
            await self._post_line(ctx, start_message_id, format_git_commit(data) if data else None)
        elif text.startswith(GIT_PUSH):
            data = parse_payload(text, GIT_PUSH)
            await self._post_line(ctx, start_message_id, format_git_push(data) if data else None)
        elif text.startswith(SUBAGENT_DONE):
            data = parse_payload(text, SUBAGENT_DONE)
            await self._post_line(ctx, start_message_id, format_subagent_done(data) if data else None)
        else:
            return False
        return True

    # ------------------------------------------------------------------
    # Task checklist
    # ------------------------------------------------------------------

    async def _handle_task(self, ctx: EventContext, start_message_id: Optional[str], text: str) -> None:
        prefix = TASK_CREATE if text.startswith(TASK_CREATE) else TASK_UPDATE
        data = parse_payload(text, prefix)
        if data is None:
            return

        checklist = self._current_checklist(ctx, start_message_id)
        if prefix == TASK_CREATE:
            checklist.add(_str_field(data, "subject"))
        elif not self._apply_update(checklist, data):
            return

        await self._render(ctx.key, checklist)
        self._streaming.append(ctx.project_name, ctx.instance_key, render_checklist(checklist))

    def _current_checklist(self, ctx: EventContext, start_message_id: Optional[str]) -> TaskChecklist:
        parent = start_message_id or ""
        checklist = self._checklists.get(ctx.key)
        if checklist is None or checklist.parent_message_id != parent:
            checklist = TaskChecklist(channel_id=ctx.channel_id, parent_message_id=parent)
            self._checklists[ctx.key] = checklist
        return checklist

    @staticmethod
    def _apply_update(checklist: TaskChecklist, data: dict[str, object]) -> bool:
        task = checklist.find(data.get("taskId"))
        if task is None:
            logger.debug("TASK_UPDATE for unknown task %r", data.get("taskId"))
            return False
        status = data.get("status")
        if isinstance(status, str) and status in TASK_STATUSES:
            task.status = status  # type: ignore[assignment]
        subject = _str_field(data, "subject")
        if subject:
            task.subject = subject
        return True

    async def _render(self, key: str, checklist: TaskChecklist) -> None:
        content = render_checklist(checklist)
        try:
            if checklist.message_id:
                await self._messaging.update_message(checklist.channel_id, checklist.message_id, content)
            elif self._threads is not None:
                if not checklist.parent_message_id:
                    return
                checklist.message_id = await self._threads.reply_in_thread_with_id(
                    checklist.channel_id, checklist.parent_message_id, content
                )
            else:
                checklist.message_id = await self._messaging.send_to_channel_with_id(checklist.channel_id, content)
        except Exception:
            logger.warning("Failed to render task checklist for %s", key, exc_info=True)

    async def mark_task_completed(self, ctx: EventContext, task_id: object) -> None:
        """Tick a task off the live checklist; no-op without one or for an unknown id."""
        checklist = self._checklists.get(ctx.key)
        if checklist is None:
            return
        task = checklist.find(task_id)
        if task is None or task.status == "completed":
            return
        task.status = "completed"
        await self._render(ctx.key, checklist)

    def get_checklist(self, key: str) -> Optional[TaskChecklist]:
        return self._checklists.get(key)

    def clear(self, key: str) -> None:
        self._checklists.pop(key, None)

    def reset(self) -> None:
        self._checklists.clear()

    # ------------------------------------------------------------------
    # One-line replies (git, subagents)
    # ------------------------------------------------------------------

    async def _post_line(self, ctx: EventContext, start_message_id: Optional[str], line: Optional[str]) -> None:
        if not line:
            return
        try:
            if self._threads is not None and start_message_id:
                await self._threads.reply_in_thread(ctx.channel_id, start_message_id, line)
            else:
                await self._messaging.send_to_channel(ctx.channel_id, line)
        except Exception:
            logger.warning("Failed to post structured activity for %s", ctx.key, exc_info=True)
        self._streaming.append(ctx.project_name, ctx.instance_key, line)
