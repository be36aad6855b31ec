"""chatbridge daemon: hook server plus event orchestrator."""

import asyncio
import itertools
import signal
import sys
from typing import Optional, Sequence

import uvicorn
from fastapi import FastAPI
from structlog import get_logger

from chatbridge.config import Config, load_app_config
from chatbridge.core.models import InteractiveQuestion
from chatbridge.core.orchestrator import EventOrchestrator
from chatbridge.core.project_registry import ConfigProjectRegistry
from chatbridge.core.protocols import MessagingClient
from chatbridge.hooks import api_routes
from chatbridge.logging_config import setup_logging

logger = get_logger(__name__)

SERVER_START_RETRIES = 50  # 5 seconds total


class ConsoleMessaging:
    """Messaging client that logs every chat operation instead of sending it.

    Used when the daemon runs without a platform client (dry runs, hook
    script development).
    """

    platform = "console"
    supports_edits = True
    supports_threads = True

    def __init__(self) -> None:
        self._ids = itertools.count(1)

    def _next_id(self) -> str:
        return f"console-{next(self._ids)}"

    async def send_to_channel(self, channel_id: str, text: str) -> None:
        logger.info("[%s] %s", channel_id, text)

    async def send_to_channel_with_id(self, channel_id: str, text: str) -> Optional[str]:
        message_id = self._next_id()
        logger.info("[%s] (%s) %s", channel_id, message_id, text)
        return message_id

    async def send_to_channel_with_files(self, channel_id: str, caption: str, file_paths: Sequence[str]) -> None:
        logger.info("[%s] %s files=%s", channel_id, caption, list(file_paths))

    async def add_reaction(self, channel_id: str, message_id: str, emoji: str) -> None:
        logger.info("[%s] react %s on %s", channel_id, emoji, message_id)

    async def replace_own_reaction(self, channel_id: str, message_id: str, from_emoji: str, to_emoji: str) -> None:
        logger.info("[%s] react %s -> %s on %s", channel_id, from_emoji, to_emoji, message_id)

    async def update_message(self, channel_id: str, message_id: str, text: str) -> None:
        logger.info("[%s] edit %s: %s", channel_id, message_id, text)

    async def send_interactive_questions(
        self, channel_id: str, questions: Sequence[InteractiveQuestion]
    ) -> Optional[str]:
        for question in questions:
            logger.info("[%s] ? %s [%s]", channel_id, question.question, ", ".join(o.label for o in question.options))
        return None

    async def reply_in_thread(self, channel_id: str, parent_message_id: str, text: str) -> None:
        logger.info("[%s] thread %s: %s", channel_id, parent_message_id, text)

    async def reply_in_thread_with_id(self, channel_id: str, parent_message_id: str, text: str) -> Optional[str]:
        message_id = self._next_id()
        logger.info("[%s] thread %s (%s): %s", channel_id, parent_message_id, message_id, text)
        return message_id


def create_app(orchestrator: EventOrchestrator, config: Config) -> FastAPI:
    """FastAPI app serving the hook routes for one orchestrator."""
    api_routes.set_orchestrator(orchestrator, max_body_bytes=config.hook.max_body_bytes)
    app = FastAPI(title="chatbridge")
    app.include_router(api_routes.router)
    return app


class ChatBridgeDaemon:
    """Owns the orchestrator and the uvicorn server for the hook transport."""

    def __init__(self, config: Config, messaging: Optional[MessagingClient] = None) -> None:
        self.config = config
        self.orchestrator = EventOrchestrator(
            messaging or ConsoleMessaging(),
            ConfigProjectRegistry(config.projects),
            config=config,
        )
        self.app = create_app(self.orchestrator, config)
        self.shutdown_event = asyncio.Event()
        self.server: uvicorn.Server | None = None
        self.server_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Start uvicorn and wait until it is listening."""
        server_config = uvicorn.Config(
            self.app,
            host=self.config.hook.host,
            port=self.config.hook.port,
            log_level="warning",
        )
        self.server = uvicorn.Server(server_config)
        server = self.server
        # uvicorn's own signal handling stays off; the daemon owns shutdown
        serve_coro = server._serve() if hasattr(server, "_serve") else server.serve()
        self.server_task = asyncio.create_task(serve_coro)

        for _ in range(SERVER_START_RETRIES):
            if server.started:
                break
            if self.server_task.done():
                exc = self.server_task.exception()
                raise RuntimeError("Hook server exited during startup") from exc
            await asyncio.sleep(0.1)
        if not server.started:
            raise TimeoutError("Hook server failed to start within timeout")

        logger.info(
            "Hook server listening on %s:%d (%d project(s))",
            self.config.hook.host,
            self.config.hook.port,
            len(self.config.projects),
        )

    async def stop(self) -> None:
        if self.server is not None:
            self.server.should_exit = True
        if self.server_task is not None:
            try:
                await asyncio.wait_for(self.server_task, timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("Hook server did not stop within 5s; cancelling")
                self.server_task.cancel()
        await self.orchestrator.shutdown()
        api_routes.set_orchestrator(None)
        logger.info("Daemon stopped")


async def main() -> None:
    """Main entry point."""
    setup_logging()
    config = load_app_config()
    daemon = ChatBridgeDaemon(config)

    def signal_handler(signum: int, _frame: object) -> None:
        logger.info("Received %s signal...", signal.Signals(signum).name)
        daemon.shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        await daemon.start()
        await daemon.shutdown_event.wait()
    except Exception as e:
        logger.error("Daemon failed: %s", e, exc_info=True)
        sys.exit(1)
    finally:
        try:
            await daemon.stop()
        except Exception as e:
            logger.error("Error during daemon stop: %s", e)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
