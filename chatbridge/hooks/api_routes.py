"""FastAPI router for the agent hook transport."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError
from structlog import get_logger

from chatbridge.constants import HOOK_EVENT_PATH, HOOK_MAX_BODY_BYTES
from chatbridge.core.event_pipeline import UnknownProjectError
from chatbridge.hooks.models import HookEventPayload

if TYPE_CHECKING:
    from chatbridge.core.orchestrator import EventOrchestrator

logger = get_logger(__name__)

router = APIRouter(tags=["hooks"])

# Lazy reference, set by the daemon during startup
_orchestrator: EventOrchestrator | None = None
_max_body_bytes: int = HOOK_MAX_BODY_BYTES


def set_orchestrator(orchestrator: EventOrchestrator | None, max_body_bytes: int = HOOK_MAX_BODY_BYTES) -> None:
    """Called by the daemon to inject the EventOrchestrator instance."""
    global _orchestrator, _max_body_bytes
    _orchestrator = orchestrator
    _max_body_bytes = max_body_bytes


def _get_orchestrator() -> EventOrchestrator:
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="event pipeline not initialized")
    return _orchestrator


async def _read_body(request: Request) -> bytes:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > _max_body_bytes:
        raise HTTPException(status_code=413, detail="body too large")

    body = b""
    async for chunk in request.stream():
        body += chunk
        if len(body) > _max_body_bytes:
            raise HTTPException(status_code=413, detail="body too large")
    return body


@router.post(HOOK_EVENT_PATH)
async def receive_agent_event(request: Request) -> dict[str, str]:
    """Accept one hook event and run it through the pipeline."""
    orchestrator = _get_orchestrator()
    body = await _read_body(request)

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Rejected hook request: malformed JSON (%d bytes)", len(body))
        raise HTTPException(status_code=400, detail="invalid body")

    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="invalid event")
    project_name = payload.get("projectName")
    if not isinstance(project_name, str) or not project_name.strip():
        logger.warning("Rejected hook request: missing projectName")
        raise HTTPException(status_code=400, detail="missing projectName")

    try:
        event = HookEventPayload.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Rejected hook request for %s: %s", project_name, exc.errors(include_url=False))
        raise HTTPException(status_code=400, detail="invalid event")

    try:
        await orchestrator.handle_event(event.to_event())
    except UnknownProjectError as exc:
        logger.warning("Rejected hook request: %s", exc)
        raise HTTPException(status_code=404, detail="unknown project")

    return {"status": "ok"}


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
