"""session.idle delivery: the turn's final response and everything around it.

Each step is isolated so a failure in one (a rejected thread reply, an
unreadable attachment) does not stop the next. Steps run in order:
intermediate text, reasoning, response text, files, then questions or the
prompt text.
"""

from __future__ import annotations

import os
from typing import Mapping, Optional

from structlog import get_logger

from chatbridge.constants import FINALIZE_DEFAULT_HEADER, THINKING_MAX_CHARS, THINKING_TRUNCATED_MARKER
from chatbridge.core.models import EventContext, InteractiveQuestion, QuestionOption
from chatbridge.core.protocols import AnswerSink, FileSideChannel, MessagingClient, ThreadMessaging
from chatbridge.core.task_registry import TaskRegistry
from chatbridge.utils import format_cost, format_token_count, split_for_platform

logger = get_logger(__name__)


def _number(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value


def build_finalize_header(usage: object) -> Optional[str]:
    """Usage summary for the streaming preview ("✅ Done · 8,234 tokens · $0.03").

    Returns None without a usage object, so the default header applies.
    """
    if not isinstance(usage, Mapping):
        return None
    total_tokens = int(_number(usage.get("inputTokens")) + _number(usage.get("outputTokens")))
    total_cost = _number(usage.get("totalCostUsd"))
    parts = [FINALIZE_DEFAULT_HEADER]
    if total_tokens > 0:
        parts.append(f"{format_token_count(total_tokens)} tokens")
    if total_cost > 0:
        parts.append(format_cost(total_cost))
    return " · ".join(parts)


def format_thinking(thinking: str) -> str:
    if len(thinking) > THINKING_MAX_CHARS:
        thinking = f"{thinking[:THINKING_MAX_CHARS]}\n\n{THINKING_TRUNCATED_MARKER}"
    return f"🧠 Reasoning\n```\n{thinking}\n```"


def parse_questions(raw: object) -> list[InteractiveQuestion]:
    """Well-formed questions from a promptQuestions payload.

    The list is all-or-nothing: any item without a question or without a
    labelled option makes the payload unusable and yields [].
    """
    if not isinstance(raw, list) or not raw:
        return []

    questions: list[InteractiveQuestion] = []
    for item in raw:
        if not isinstance(item, Mapping):
            return []
        question = item.get("question")
        raw_options = item.get("options")
        if not isinstance(question, str) or not question.strip() or not isinstance(raw_options, list):
            return []
        options = [
            QuestionOption(
                label=opt["label"],
                description=opt["description"] if isinstance(opt.get("description"), str) else None,
            )
            for opt in raw_options
            if isinstance(opt, Mapping) and isinstance(opt.get("label"), str) and opt["label"].strip()
        ]
        if not options:
            return []
        header = item.get("header")
        questions.append(
            InteractiveQuestion(
                question=question.strip(),
                options=options,
                header=header if isinstance(header, str) and header else None,
                multi_select=item.get("multiSelect") is True,
            )
        )
    return questions


class IdleResponder:
    """Posts the final response of a turn."""

    def __init__(
        self,
        messaging: MessagingClient,
        threads: Optional[ThreadMessaging],
        files: FileSideChannel,
        tasks: TaskRegistry,
        answer_sink: Optional[AnswerSink] = None,
    ) -> None:
        self._messaging = messaging
        self._threads = threads
        self._files = files
        self._tasks = tasks
        self._answer_sink = answer_sink

    async def deliver(self, ctx: EventContext, start_message_id: Optional[str]) -> None:
        await self._post_intermediate_text(ctx, start_message_id)
        await self._post_thinking(ctx, start_message_id)
        await self._post_response(ctx)
        if not self._post_questions(ctx):
            await self._post_prompt_text(ctx)

    async def send_split(self, channel_id: str, text: str) -> None:
        """Send text to a channel in platform-sized chunks, in order."""
        for chunk in split_for_platform(text, self._messaging.platform):
            await self._messaging.send_to_channel(channel_id, chunk)

    async def _reply_split(self, channel_id: str, parent_message_id: str, text: str) -> None:
        if self._threads is None:
            return
        for chunk in split_for_platform(text, self._messaging.platform):
            await self._threads.reply_in_thread(channel_id, parent_message_id, chunk)

    async def _post_intermediate_text(self, ctx: EventContext, start_message_id: Optional[str]) -> None:
        text = ctx.get_str("intermediateText")
        if not text or not start_message_id or self._threads is None:
            return
        try:
            await self._reply_split(ctx.channel_id, start_message_id, text)
        except Exception:
            logger.warning("Failed to post intermediate text for %s", ctx.key, exc_info=True)

    async def _post_thinking(self, ctx: EventContext, start_message_id: Optional[str]) -> None:
        thinking = ctx.get_str("thinking")
        if not thinking or not start_message_id or self._threads is None:
            return
        try:
            await self._reply_split(ctx.channel_id, start_message_id, format_thinking(thinking))
        except Exception:
            logger.warning("Failed to post reasoning for %s", ctx.key, exc_info=True)

    async def _post_response(self, ctx: EventContext) -> None:
        text = (ctx.text or "").strip()
        if not text:
            return

        display_text, paths = self._files.extract(text, ctx.project_path)
        if display_text.strip():
            try:
                await self.send_split(ctx.channel_id, display_text.strip())
            except Exception:
                logger.warning("Failed to post response text for %s", ctx.key, exc_info=True)
        if paths:
            try:
                await self._messaging.send_to_channel_with_files(ctx.channel_id, "", paths)
            except Exception:
                logger.warning("Failed to attach %d file(s) for %s", len(paths), ctx.key, exc_info=True)

    def _post_questions(self, ctx: EventContext) -> bool:
        """Spawn the interactive question flow. Returns True when questions were sent."""
        questions = parse_questions(ctx.event.get("promptQuestions"))
        if not questions:
            return False
        self._tasks.spawn(self._ask(ctx, questions), name=f"questions:{ctx.key}")
        return True

    async def _ask(self, ctx: EventContext, questions: list[InteractiveQuestion]) -> None:
        try:
            selection = await self._messaging.send_interactive_questions(ctx.channel_id, questions)
        except Exception:
            logger.warning("Failed to deliver interactive questions for %s", ctx.key, exc_info=True)
            return
        if selection is None:
            logger.info("Interactive question for %s timed out without an answer", ctx.key)
            return
        if self._answer_sink is None:
            logger.debug("No answer sink configured; dropping selection for %s", ctx.key)
            return
        await self._answer_sink(ctx.project_name, ctx.instance_key, selection)

    async def _post_prompt_text(self, ctx: EventContext) -> None:
        prompt_text = ctx.get_str("promptText")
        if not prompt_text:
            return
        plan_file = ctx.get_str("planFilePath")
        try:
            if plan_file and os.path.isfile(plan_file):
                await self._messaging.send_to_channel_with_files(ctx.channel_id, prompt_text, [plan_file])
            else:
                await self.send_split(ctx.channel_id, prompt_text)
        except Exception:
            logger.warning("Failed to post prompt text for %s", ctx.key, exc_info=True)
