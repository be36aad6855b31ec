"""Constants used across chatbridge.

Glyphs, event names and internal limits that are not user-configurable.
"""

from typing import Literal

# Hook event types understood by the pipeline
EventType = Literal[
    "session.start",
    "session.idle",
    "session.error",
    "session.notification",
    "session.end",
    "thinking.start",
    "thinking.stop",
    "tool.activity",
    "tool.failure",
    "prompt.submit",
    "task.completed",
    "permission.request",
]


class HookEvents:
    """Lifecycle events pushed by agent hooks (or synthesized by the fallback poller)."""

    SESSION_START: Literal["session.start"] = "session.start"
    SESSION_IDLE: Literal["session.idle"] = "session.idle"
    SESSION_ERROR: Literal["session.error"] = "session.error"
    SESSION_NOTIFICATION: Literal["session.notification"] = "session.notification"
    SESSION_END: Literal["session.end"] = "session.end"
    THINKING_START: Literal["thinking.start"] = "thinking.start"
    THINKING_STOP: Literal["thinking.stop"] = "thinking.stop"
    TOOL_ACTIVITY: Literal["tool.activity"] = "tool.activity"
    TOOL_FAILURE: Literal["tool.failure"] = "tool.failure"
    PROMPT_SUBMIT: Literal["prompt.submit"] = "prompt.submit"
    TASK_COMPLETED: Literal["task.completed"] = "task.completed"
    PERMISSION_REQUEST: Literal["permission.request"] = "permission.request"


# Events that implicitly open a turn when none is tracked (agent-originated prompts)
AUTO_PENDING_EVENTS = frozenset(
    {
        HookEvents.TOOL_ACTIVITY,
        HookEvents.SESSION_IDLE,
        HookEvents.PROMPT_SUBMIT,
    }
)

# Timer slot kinds
TIMER_THINKING = "thinking"
TIMER_LIFECYCLE = "lifecycle"
TIMER_FALLBACK = "fallback"
TIMER_STREAM_FLUSH = "stream-flush"

# Reactions
REACTION_WORKING = "⏳"
REACTION_SUCCESS = "✅"
REACTION_FAILURE = "❌"
REACTION_THINKING = "🧠"

# Status texts
START_MESSAGE_PREFIX = "📝 Prompt"
START_PREVIEW_MAX_CHARS = 160
STREAMING_PLACEHOLDER = "⏳ Working..."
FINALIZE_DEFAULT_HEADER = "✅ Done"
STREAMING_PREVIEW_LINES = 10

# Notification icons by notificationType
NOTIFICATION_ICONS: dict[str, str] = {
    "permission_prompt": "🔐",
    "idle_prompt": "💤",
    "auth_success": "🔑",
    "elicitation_dialog": "❓",
}
NOTIFICATION_DEFAULT_ICON = "🔔"
ELICITATION_DIALOG = "elicitation_dialog"

# Task checklist glyphs
TASK_STATUS_GLYPHS: dict[str, str] = {
    "pending": "⬜",
    "in_progress": "🔄",
    "completed": "☑️",
}

# session.idle delivery
THINKING_MAX_CHARS = 12000
THINKING_TRUNCATED_MARKER = "_(truncated)_"
ERROR_CONTEXT_LINES = 5
THINKING_REPORT_MIN_S = 5

# Per-platform message ceilings (platform limit minus formatting overhead)
MESSAGE_MAX_CHARS: dict[str, int] = {
    "slack": 3900,
    "discord": 1900,
    "telegram": 3900,
}
DEFAULT_MESSAGE_MAX_CHARS = 1900

# Hook transport
HOOK_EVENT_PATH = "/agent-event"
HOOK_MAX_BODY_BYTES = 256 * 1024
