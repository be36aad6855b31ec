"""Default file side-channel: absolute paths under the project's files dir.

Agents hand files to the chat by mentioning their absolute path, e.g.
"Saved the chart to /work/app/.chatbridge/files/chart.png". The path is
stripped from the displayed text and the file is attached instead.
"""

from __future__ import annotations

import os
import re

_PATH_RE = re.compile(r"(?<![\w/:])(/[^\s`'\"<>()\[\]{},;]+)")
_BLANK_RUN_RE = re.compile(r"\n{3,}")
_TRAILING_SPACE_RE = re.compile(r"[ \t]+$", re.MULTILINE)


def _inside(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


class FileMarkerExtractor:
    """Implements the file side-channel over paths containing `<dirname>/`."""

    def __init__(self, files_dirname: str = ".chatbridge/files") -> None:
        self._marker = "/" + files_dirname.strip("/") + "/"

    def find_paths(self, text: str) -> list[str]:
        """Candidate paths in order of appearance, deduplicated, trailing dots removed."""
        paths: list[str] = []
        for match in _PATH_RE.finditer(text):
            candidate = match.group(1).rstrip(".:!?")
            if self._marker in candidate and candidate not in paths:
                paths.append(candidate)
        return paths

    def validate(self, paths: list[str], project_path: str) -> list[str]:
        """Keep existing files that resolve inside the project."""
        if not project_path:
            return []
        root = os.path.realpath(project_path)
        valid: list[str] = []
        for path in paths:
            if not os.path.isfile(path):
                continue
            if _inside(os.path.realpath(path), root):
                valid.append(path)
        return valid

    def extract(self, text: str, project_path: str) -> tuple[str, list[str]]:
        paths = self.validate(self.find_paths(text), project_path)
        if not paths:
            return text, []

        display = text
        for path in paths:
            display = display.replace(f"`{path}`", "").replace(path, "")
        display = _TRAILING_SPACE_RE.sub("", display)
        display = _BLANK_RUN_RE.sub("\n\n", display).strip()
        return display, paths
