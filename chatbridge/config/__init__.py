"""Runtime configuration.

The YAML file is validated by `chatbridge.config.schema` and flattened into the
dataclasses below, with environment overrides applied last. Load it with:

    from chatbridge.config import load_app_config

    config = load_app_config()
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from structlog import get_logger

from chatbridge.config.loader import DEFAULT_CONFIG_PATH, load_global_config
from chatbridge.config.schema import GlobalConfig

logger = get_logger(__name__)

_project_root = Path(__file__).parent.parent.parent


@dataclass
class HookConfig:
    host: str = "127.0.0.1"
    port: int = 18470
    max_body_bytes: int = 256 * 1024


@dataclass
class TimingSettings:
    """Pipeline timer settings (seconds)."""

    session_lifecycle_delay_s: float = 5.0
    thinking_interval_s: float = 10.0
    stream_debounce_s: float = 0.75


@dataclass
class FallbackSettings:
    """Buffer fallback poller settings.

    Attributes:
        initial_delay_s: Delay before the first buffer capture
        stable_check_s: Delay between stability checks
        max_checks: Attempts before the poller gives up (turn stays pending)
        prompt_markers: Line prefixes that mark an agent input prompt
    """

    initial_delay_s: float = 3.0
    stable_check_s: float = 2.0
    max_checks: int = 3
    prompt_markers: tuple[str, ...] = ("❯", "›")


@dataclass
class InstanceConfig:
    agent_type: str
    instance_id: Optional[str] = None
    channel_id: Optional[str] = None
    tmux_session: Optional[str] = None
    tmux_window: Optional[str] = None


@dataclass
class ProjectConfig:
    name: str
    path: Optional[str] = None
    instances: list[InstanceConfig] = field(default_factory=list)


@dataclass
class Config:
    hook: HookConfig = field(default_factory=HookConfig)
    timing: TimingSettings = field(default_factory=TimingSettings)
    fallback: FallbackSettings = field(default_factory=FallbackSettings)
    files_dirname: str = ".chatbridge/files"
    projects: dict[str, ProjectConfig] = field(default_factory=dict)


def _env_ms(name: str, default_s: float) -> float:
    """Read a millisecond env override, returning seconds."""
    raw = os.getenv(name)
    if not raw:
        return default_s
    try:
        return max(0.0, float(raw) / 1000.0)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default_s


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return max(minimum, int(raw))
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


def build_config(raw: GlobalConfig) -> Config:
    """Flatten the validated YAML model into runtime config and apply env overrides."""
    projects = {
        name: ProjectConfig(
            name=name,
            path=entry.path,
            instances=[
                InstanceConfig(
                    agent_type=inst.agent_type,
                    instance_id=inst.instance_id,
                    channel_id=inst.channel_id,
                    tmux_session=inst.tmux_session,
                    tmux_window=inst.tmux_window,
                )
                for inst in entry.instances
            ],
        )
        for name, entry in raw.projects.items()
    }

    return Config(
        hook=HookConfig(
            host=raw.hook.host,
            port=_env_int("CHATBRIDGE_HOOK_PORT", raw.hook.port),
            max_body_bytes=raw.hook.max_body_bytes,
        ),
        timing=TimingSettings(
            session_lifecycle_delay_s=raw.timing.session_lifecycle_delay_s,
            thinking_interval_s=raw.timing.thinking_interval_s,
            stream_debounce_s=raw.timing.stream_debounce_s,
        ),
        fallback=FallbackSettings(
            initial_delay_s=_env_ms("CHATBRIDGE_BUFFER_FALLBACK_INITIAL_MS", raw.fallback.initial_delay_s),
            stable_check_s=_env_ms("CHATBRIDGE_BUFFER_FALLBACK_STABLE_MS", raw.fallback.stable_check_s),
            max_checks=_env_int("CHATBRIDGE_BUFFER_FALLBACK_MAX_CHECKS", raw.fallback.max_checks),
            prompt_markers=tuple(raw.fallback.prompt_markers),
        ),
        files_dirname=raw.files.dirname,
        projects=projects,
    )


def load_app_config(config_path: Optional[Path] = None) -> Config:
    """Load .env, then the YAML config, and build runtime config.

    `CHATBRIDGE_ENV_PATH` and `CHATBRIDGE_CONFIG_PATH` override the default
    locations.
    """
    env_path = os.getenv("CHATBRIDGE_ENV_PATH")
    dotenv_path = Path(env_path).expanduser() if env_path else _project_root / ".env"
    load_dotenv(dotenv_path)

    if config_path is None:
        configured = os.getenv("CHATBRIDGE_CONFIG_PATH")
        config_path = Path(configured).expanduser() if configured else DEFAULT_CONFIG_PATH.expanduser()

    return build_config(load_global_config(config_path))
