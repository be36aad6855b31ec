"""Pytest configuration for chatbridge tests."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Optional, Sequence

import pytest
import pytest_asyncio

from chatbridge.config import Config, FallbackSettings, InstanceConfig, ProjectConfig, TimingSettings
from chatbridge.core.models import InteractiveQuestion
from chatbridge.core.orchestrator import EventOrchestrator
from chatbridge.core.project_registry import ConfigProjectRegistry


def pytest_collection_modifyitems(config, items):
    """Set per-marker timeouts: unit=1s, integration=5s."""
    for item in items:
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(1))
        elif "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(5))


@dataclass
class Call:
    method: str
    args: tuple[object, ...]


@dataclass
class RecordingMessaging:
    """Messaging client that records every call in order.

    Message ids are "msg-1", "msg-2", ... Methods named in `failing` raise;
    methods named in `no_id` return None instead of an id.
    """

    platform: str = "slack"
    supports_edits: bool = True
    supports_threads: bool = True
    calls: list[Call] = field(default_factory=list)
    failing: set[str] = field(default_factory=set)
    no_id: set[str] = field(default_factory=set)
    answer: Optional[str] = None

    def __post_init__(self) -> None:
        self._ids = itertools.count(1)

    def _record(self, method: str, *args: object) -> None:
        self.calls.append(Call(method, args))
        if method in self.failing:
            raise RuntimeError(f"{method} failed")

    def _new_id(self, method: str) -> Optional[str]:
        if method in self.no_id:
            return None
        return f"msg-{next(self._ids)}"

    async def send_to_channel(self, channel_id: str, text: str) -> None:
        self._record("send_to_channel", channel_id, text)

    async def send_to_channel_with_id(self, channel_id: str, text: str) -> Optional[str]:
        self._record("send_to_channel_with_id", channel_id, text)
        return self._new_id("send_to_channel_with_id")

    async def send_to_channel_with_files(self, channel_id: str, caption: str, file_paths: Sequence[str]) -> None:
        self._record("send_to_channel_with_files", channel_id, caption, list(file_paths))

    async def add_reaction(self, channel_id: str, message_id: str, emoji: str) -> None:
        self._record("add_reaction", channel_id, message_id, emoji)

    async def replace_own_reaction(self, channel_id: str, message_id: str, from_emoji: str, to_emoji: str) -> None:
        self._record("replace_own_reaction", channel_id, message_id, from_emoji, to_emoji)

    async def update_message(self, channel_id: str, message_id: str, text: str) -> None:
        self._record("update_message", channel_id, message_id, text)

    async def send_interactive_questions(
        self, channel_id: str, questions: Sequence[InteractiveQuestion]
    ) -> Optional[str]:
        self._record("send_interactive_questions", channel_id, list(questions))
        return self.answer

    async def reply_in_thread(self, channel_id: str, parent_message_id: str, text: str) -> None:
        self._record("reply_in_thread", channel_id, parent_message_id, text)

    async def reply_in_thread_with_id(self, channel_id: str, parent_message_id: str, text: str) -> Optional[str]:
        self._record("reply_in_thread_with_id", channel_id, parent_message_id, text)
        return self._new_id("reply_in_thread_with_id")

    def of(self, method: str) -> list[tuple[object, ...]]:
        """Arguments of every call to `method`, in order."""
        return [call.args for call in self.calls if call.method == method]

    def channel_texts(self) -> list[str]:
        return [str(args[1]) for args in self.of("send_to_channel")]

    def thread_texts(self) -> list[str]:
        return [str(args[2]) for args in self.of("reply_in_thread") + self.of("reply_in_thread_with_id")]

    def ordered_thread_texts(self) -> list[str]:
        return [
            str(call.args[2]) for call in self.calls if call.method in ("reply_in_thread", "reply_in_thread_with_id")
        ]


def make_config(**fallback: object) -> Config:
    """Config with one project ("app") and short timers for tests."""
    return Config(
        timing=TimingSettings(session_lifecycle_delay_s=0.05, thinking_interval_s=0.05, stream_debounce_s=0.01),
        fallback=FallbackSettings(
            initial_delay_s=float(fallback.get("initial_delay_s", 0.01)),  # type: ignore[arg-type]
            stable_check_s=float(fallback.get("stable_check_s", 0.01)),  # type: ignore[arg-type]
            max_checks=int(fallback.get("max_checks", 3)),  # type: ignore[call-overload]
        ),
        projects={
            "app": ProjectConfig(
                name="app",
                path="/tmp/app",
                instances=[
                    InstanceConfig(agent_type="claude", channel_id="C1", tmux_session="app", tmux_window="claude"),
                    InstanceConfig(agent_type="codex", instance_id="codex-2", channel_id="C2"),
                    InstanceConfig(agent_type="gemini"),
                ],
            )
        },
    )


@pytest.fixture
def messaging() -> RecordingMessaging:
    return RecordingMessaging()


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest_asyncio.fixture
async def orchestrator(messaging: RecordingMessaging, config: Config):
    orch = EventOrchestrator(messaging, ConfigProjectRegistry(config.projects), config=config)
    yield orch
    await orch.shutdown(timeout=0.5)
