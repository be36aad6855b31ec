from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class HookServerConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    host: str = "127.0.0.1"
    port: int = Field(default=18470, ge=1, le=65535)
    max_body_bytes: int = Field(default=256 * 1024, ge=1024)


class TimingConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    session_lifecycle_delay_s: float = Field(default=5.0, gt=0)
    thinking_interval_s: float = Field(default=10.0, gt=0)
    stream_debounce_s: float = Field(default=0.75, ge=0)


class FallbackConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    initial_delay_s: float = Field(default=3.0, ge=0)
    stable_check_s: float = Field(default=2.0, ge=0)
    max_checks: int = Field(default=3, ge=1)
    prompt_markers: List[str] = ["❯", "›"]

    @field_validator("prompt_markers")
    @classmethod
    def validate_prompt_markers(cls, v: List[str]) -> List[str]:
        """Prompt markers must be non-empty single tokens."""
        cleaned = [marker.strip() for marker in v if marker.strip()]
        if not cleaned:
            raise ValueError("prompt_markers must contain at least one non-blank marker")
        return cleaned


class FilesConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    # Directory (relative to the project path) agents drop files into for delivery
    dirname: str = ".chatbridge/files"


class InstanceEntry(BaseModel):
    model_config = ConfigDict(extra="allow")
    instance_id: Optional[str] = None
    agent_type: str = "claude"
    channel_id: Optional[str] = None
    tmux_session: Optional[str] = None
    tmux_window: Optional[str] = None


class ProjectEntry(BaseModel):
    model_config = ConfigDict(extra="allow")
    path: Optional[str] = None
    instances: List[InstanceEntry] = []


class GlobalConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    hook: HookServerConfig = HookServerConfig()
    timing: TimingConfig = TimingConfig()
    fallback: FallbackConfig = FallbackConfig()
    files: FilesConfig = FilesConfig()
    projects: Dict[str, ProjectEntry] = {}
