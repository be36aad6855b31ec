"""Unit tests for ConfigProjectRegistry."""

from chatbridge.config import InstanceConfig, ProjectConfig
from chatbridge.core.project_registry import ConfigProjectRegistry


def make_registry() -> ConfigProjectRegistry:
    return ConfigProjectRegistry(
        {
            "app": ProjectConfig(
                name="app",
                path="/work/app",
                instances=[
                    InstanceConfig(agent_type="claude", channel_id="C1", tmux_session="app", tmux_window="claude"),
                    InstanceConfig(agent_type="claude", instance_id="claude-2", channel_id="C3"),
                    InstanceConfig(agent_type="codex", instance_id="codex-1", channel_id="C2"),
                ],
            ),
            "empty": ProjectConfig(name="empty"),
        }
    )


def test_has_project():
    registry = make_registry()

    assert registry.has_project("app")
    assert not registry.has_project("other")


def test_resolve_by_instance_id():
    resolved = make_registry().resolve("app", "claude", "claude-2")

    assert resolved.channel_id == "C3"
    assert resolved.instance_key == "claude-2"


def test_unknown_instance_id_falls_back_to_agent_type():
    resolved = make_registry().resolve("app", "codex", "codex-9")

    assert resolved.instance_id == "codex-1"
    assert resolved.channel_id == "C2"


def test_resolve_first_instance_of_agent_type():
    resolved = make_registry().resolve("app", "claude", None)

    assert resolved.channel_id == "C1"
    assert resolved.instance_key == "claude"
    assert resolved.project_path == "/work/app"
    assert (resolved.tmux_session, resolved.tmux_window) == ("app", "claude")


def test_unknown_agent_type_is_unresolved():
    assert make_registry().resolve("app", "gemini", None) is None


def test_no_agent_type_uses_first_instance():
    resolved = make_registry().resolve("app", None, None)

    assert resolved.agent_type == "claude"
    assert resolved.channel_id == "C1"


def test_project_without_instances():
    registry = make_registry()

    assert registry.resolve("empty", None, None) is None
    assert registry.resolve("other", "claude", None) is None
