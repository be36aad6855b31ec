"""Wire model for agent hook events."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class HookEventPayload(BaseModel):
    """One hook event as posted by an agent hook script.

    Only `projectName` and `type` are required. Unknown fields are kept so
    newer hook scripts can add data without a daemon upgrade.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    project_name: str = Field(alias="projectName", min_length=1)
    type: str
    agent_type: Optional[str] = Field(default=None, alias="agentType")
    instance_id: Optional[str] = Field(default=None, alias="instanceId")
    text: Optional[str] = None
    message: Optional[str] = None
    thinking: Optional[str] = None
    intermediate_text: Optional[str] = Field(default=None, alias="intermediateText")
    prompt_text: Optional[str] = Field(default=None, alias="promptText")
    prompt_questions: Optional[list[Any]] = Field(default=None, alias="promptQuestions")  # guard: loose-dict - validated by the idle responder
    usage: Any = None  # read leniently by the finalize header
    source: Optional[str] = None
    reason: Optional[str] = None
    model: Optional[str] = None
    notification_type: Optional[str] = Field(default=None, alias="notificationType")
    submitted_prompt: Optional[str] = Field(default=None, alias="submittedPrompt")
    plan_file_path: Optional[str] = Field(default=None, alias="planFilePath")
    tool_name: Optional[str] = Field(default=None, alias="toolName")
    error: Optional[str] = None
    task_id: Optional[str | int] = Field(default=None, alias="taskId")

    def to_event(self) -> dict[str, Any]:
        """Camel-cased event mapping for the pipeline (absent fields omitted)."""
        return self.model_dump(by_alias=True, exclude_none=True)
