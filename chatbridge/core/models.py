"""Data models for turn tracking and event delivery."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Mapping, Optional

TaskStatus = Literal["pending", "in_progress", "completed"]
TASK_STATUSES: frozenset[str] = frozenset({"pending", "in_progress", "completed"})


def state_key(project_name: str, instance_key: str) -> str:
    """Composite key for all per-turn state: "<project>:<instance>"."""
    return f"{project_name}:{instance_key}"


@dataclass
class PendingEntry:
    """Tracked state for one in-flight turn.

    Attributes:
        channel_id: Chat channel the turn renders into
        origin_message_id: The user message that started the turn ("" for agent-originated turns)
        start_message_id: Status message posted on first visible activity
        hook_active: True once a hook event stream was seen for this turn
    """

    channel_id: str
    origin_message_id: str = ""
    start_message_id: Optional[str] = None
    hook_active: bool = False


@dataclass
class ThreadActivityState:
    """Accumulated activity lines rendered into one thread reply."""

    channel_id: str
    parent_message_id: str
    thread_message_id: str
    lines: list[str] = field(default_factory=list)


@dataclass
class TaskItem:
    id: str
    subject: str
    status: TaskStatus = "pending"


@dataclass
class TaskChecklist:
    """Task checklist rendered into one thread reply, ids from a per-checklist counter."""

    channel_id: str
    parent_message_id: str
    message_id: Optional[str] = None
    tasks: list[TaskItem] = field(default_factory=list)
    next_id: int = 1

    def add(self, subject: str) -> TaskItem:
        task = TaskItem(id=str(self.next_id), subject=subject)
        self.next_id += 1
        self.tasks.append(task)
        return task

    def find(self, task_id: object) -> Optional[TaskItem]:
        wanted = str(task_id)
        for task in self.tasks:
            if task.id == wanted:
                return task
        return None

    @property
    def completed_count(self) -> int:
        return sum(1 for task in self.tasks if task.status == "completed")


@dataclass
class StreamingState:
    """An editable preview message bound to one turn."""

    channel_id: str
    message_id: str
    turn_message_id: Optional[str] = None
    buffer: list[str] = field(default_factory=list)


@dataclass
class ResolvedInstance:
    """Result of resolving (project, agent type / instance id) through the registry."""

    project_name: str
    agent_type: str
    channel_id: Optional[str]
    instance_id: Optional[str] = None
    project_path: str = ""
    tmux_session: Optional[str] = None
    tmux_window: Optional[str] = None

    @property
    def instance_key(self) -> str:
        return self.instance_id or self.agent_type


@dataclass
class EventContext:
    """Shared context handed to event handlers after resolution.

    `pending` is a copy of the entry taken when the event arrived; handlers
    that create the start message update it in place.
    """

    event: Mapping[str, object]
    event_type: str
    project_name: str
    channel_id: str
    agent_type: str
    instance_id: Optional[str]
    text: Optional[str]
    project_path: str = ""
    pending: Optional[PendingEntry] = None

    @property
    def instance_key(self) -> str:
        return self.instance_id or self.agent_type

    @property
    def key(self) -> str:
        return state_key(self.project_name, self.instance_key)

    def get_str(self, name: str) -> str:
        """Event field as a stripped string ("" when absent or not a string)."""
        value = self.event.get(name)
        return value.strip() if isinstance(value, str) else ""


@dataclass
class FrameSegment:
    text: str


@dataclass
class FrameLine:
    segments: list[FrameSegment] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(segment.text for segment in self.segments)


@dataclass
class TerminalFrame:
    """Structured screen capture: rendered lines made of styled segments."""

    lines: list[FrameLine] = field(default_factory=list)

    def to_text(self) -> str:
        lines = [line.text.rstrip() for line in self.lines]
        while lines and not lines[-1].strip():
            lines.pop()
        return "\n".join(lines)


@dataclass
class QuestionOption:
    label: str
    description: Optional[str] = None


@dataclass
class InteractiveQuestion:
    """One agent question with selectable options (rendered as buttons by the platform)."""

    question: str
    options: list[QuestionOption]
    header: Optional[str] = None
    multi_select: bool = False
