"""Config-backed project registry."""

from __future__ import annotations

from typing import Mapping, Optional

from chatbridge.config import InstanceConfig, ProjectConfig
from chatbridge.core.models import ResolvedInstance


class ConfigProjectRegistry:
    """Resolves instances from the `projects` section of the config.

    Resolution order: exact instance id, then the first instance of the
    requested agent type, then (without an agent type) the project's first
    instance.
    """

    def __init__(self, projects: Mapping[str, ProjectConfig]) -> None:
        self._projects = dict(projects)

    def has_project(self, project_name: str) -> bool:
        return project_name in self._projects

    def resolve(
        self, project_name: str, agent_type: Optional[str], instance_id: Optional[str]
    ) -> Optional[ResolvedInstance]:
        project = self._projects.get(project_name)
        if project is None:
            return None
        instance = self._find(project, agent_type, instance_id)
        if instance is None:
            return None
        return ResolvedInstance(
            project_name=project_name,
            agent_type=instance.agent_type,
            channel_id=instance.channel_id,
            instance_id=instance.instance_id,
            project_path=project.path or "",
            tmux_session=instance.tmux_session,
            tmux_window=instance.tmux_window,
        )

    @staticmethod
    def _find(project: ProjectConfig, agent_type: Optional[str], instance_id: Optional[str]) -> Optional[InstanceConfig]:
        if instance_id:
            for instance in project.instances:
                if instance.instance_id == instance_id:
                    return instance
        if agent_type:
            for instance in project.instances:
                if instance.agent_type == agent_type:
                    return instance
            return None
        return project.instances[0] if project.instances else None
