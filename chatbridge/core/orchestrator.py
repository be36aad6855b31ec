"""EventOrchestrator: the one long-lived owner of event delivery state.

Created once per daemon. Tracker, streaming previews, accumulation state,
timers and locks are fields of this instance rather than module globals, so
tests build a fresh orchestrator (or call `reset`) instead of patching.
"""

from __future__ import annotations

from typing import Mapping, Optional, cast

from structlog import get_logger

from chatbridge.config import Config
from chatbridge.core.buffer_fallback import BufferFallbackPoller
from chatbridge.core.event_pipeline import EventPipeline
from chatbridge.core.file_markers import FileMarkerExtractor
from chatbridge.core.idle_response import IdleResponder
from chatbridge.core.keyed_state import KeyedLocks, TimerSlots
from chatbridge.core.models import state_key
from chatbridge.core.pending_tracker import PendingTracker
from chatbridge.core.protocols import (
    AnswerSink,
    FileSideChannel,
    MessagingClient,
    ProjectRegistry,
    TerminalCapture,
    ThreadMessaging,
)
from chatbridge.core.streaming_updater import StreamingUpdater
from chatbridge.core.structured_handlers import StructuredHandlers
from chatbridge.core.task_registry import TaskRegistry
from chatbridge.core.thread_activity import ThreadActivity

logger = get_logger(__name__)


class EventOrchestrator:
    """Wires the delivery components around shared locks and timers.

    Example:
        orchestrator = EventOrchestrator(messaging, registry, config=config, capture=tmux)
        await orchestrator.handle_event({"projectName": "app", "type": "session.idle", "text": "Done!"})
        await orchestrator.shutdown()
    """

    def __init__(
        self,
        messaging: MessagingClient,
        registry: ProjectRegistry,
        *,
        config: Optional[Config] = None,
        capture: Optional[TerminalCapture] = None,
        files: Optional[FileSideChannel] = None,
        answer_sink: Optional[AnswerSink] = None,
    ) -> None:
        config = config or Config()
        self.messaging = messaging
        self.registry = registry
        self.locks = KeyedLocks()
        self.timers = TimerSlots()
        self.tasks = TaskRegistry()

        # thread replies are an optional capability, picked once here
        threads = cast(ThreadMessaging, messaging) if messaging.supports_threads else None

        self.tracker = PendingTracker(messaging)
        self.streaming = StreamingUpdater(messaging, self.timers, self.locks, debounce_s=config.timing.stream_debounce_s)
        self.thread_activity = ThreadActivity(messaging, threads)
        self.structured = StructuredHandlers(messaging, threads, self.streaming)
        self.idle = IdleResponder(
            messaging,
            threads,
            files or FileMarkerExtractor(config.files_dirname),
            self.tasks,
            answer_sink,
        )
        self.pipeline = EventPipeline(
            messaging=messaging,
            registry=registry,
            tracker=self.tracker,
            streaming=self.streaming,
            threads=self.thread_activity,
            structured=self.structured,
            idle=self.idle,
            timers=self.timers,
            locks=self.locks,
            lifecycle_delay_s=config.timing.session_lifecycle_delay_s,
            thinking_interval_s=config.timing.thinking_interval_s,
        )
        self.fallback: Optional[BufferFallbackPoller] = None
        if capture is not None:
            self.fallback = BufferFallbackPoller(
                messaging, capture, self.tracker, self.timers, self.locks, config.fallback
            )

    async def handle_event(self, event: Mapping[str, object]) -> bool:
        return await self.pipeline.handle_event(event)

    async def mark_pending(
        self,
        project_name: str,
        agent_type: str,
        channel_id: str,
        origin_message_id: str,
        instance_id: Optional[str] = None,
    ) -> None:
        """Open a turn for a routed user message (entry point for the inbound router)."""
        key = state_key(project_name, instance_id or agent_type)
        async with self.locks.hold(key):
            await self.tracker.mark_pending(project_name, agent_type, channel_id, origin_message_id, instance_id)

    def schedule_buffer_fallback(
        self,
        session_name: str,
        window_name: str,
        project_name: str,
        agent_type: str,
        instance_id: Optional[str],
        channel_id: str,
    ) -> bool:
        """Arm the terminal fallback for a hookless agent. False without a capture backend."""
        if self.fallback is None:
            logger.debug("No terminal capture configured; fallback for %s skipped", project_name)
            return False
        self.fallback.schedule(session_name, window_name, project_name, agent_type, instance_id, channel_id)
        return True

    def reset(self) -> None:
        """Drop all in-flight turn state and cancel every timer."""
        self.timers.cancel_all()
        self.tracker.reset()
        self.streaming.reset()
        self.thread_activity.reset()
        self.structured.reset()
        self.pipeline.reset()
        self.locks.clear()

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel timers and background tasks, then wait for them to exit."""
        logger.info("Shutting down event orchestrator")
        self.timers.cancel_all()
        await self.tasks.shutdown(timeout=timeout)
        try:
            await self.timers.drain(timeout=timeout)
        except TimeoutError:
            logger.warning("Timers still running after %.1fs", timeout)
