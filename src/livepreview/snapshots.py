# src/livepreview/snapshots.py
"""
Project file snapshot sources.

The live preview service never owns project files. It asks a
``ProjectSource`` for the current snapshot when a preview is created or
updated. Applications plug in their own source (database, object store);
``InMemoryProjectSource`` covers embedding and tests.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterable, Mapping

from .exceptions import NotFoundError, SnapshotError
from .models import ProjectFile, ProjectSnapshot


def normalize_files(files: Any) -> list[ProjectFile]:
    """
    Accept the shapes callers commonly hold and return ProjectFile objects.

    Supported: a mapping of path -> content, or an iterable of
    ProjectFile / ``{"path": ..., "content": ...}`` dicts.

    Raises:
        SnapshotError: On an unsupported entry
    """
    if isinstance(files, Mapping):
        return [ProjectFile(path=str(p), content=str(c)) for p, c in files.items()]

    result = []
    for entry in files or []:
        if isinstance(entry, ProjectFile):
            result.append(entry)
        elif isinstance(entry, Mapping) and "path" in entry:
            result.append(ProjectFile(path=str(entry["path"]), content=str(entry.get("content", ""))))
        else:
            raise SnapshotError(f"Unsupported project file entry: {entry!r}")
    return result


class ProjectSource(ABC):
    """Provider of project file snapshots."""

    @abstractmethod
    async def get_project(self, project_id: str) -> ProjectSnapshot:
        """
        Return the current files of a project.

        Raises:
            NotFoundError: If the project is unknown or has no files
        """
        pass


class InMemoryProjectSource(ProjectSource):
    """Dict-backed ProjectSource."""

    def __init__(self, projects: Iterable[ProjectSnapshot] | None = None):
        self._projects: dict[str, ProjectSnapshot] = {}
        for snapshot in projects or []:
            self._projects[snapshot.project_id] = snapshot

    def put(self, project_id: str, files: Any, runtime_kind: str = "node") -> ProjectSnapshot:
        snapshot = ProjectSnapshot(
            project_id=project_id, files=normalize_files(files), runtime_kind=runtime_kind
        )
        self._projects[project_id] = snapshot
        return snapshot

    def remove(self, project_id: str) -> None:
        self._projects.pop(project_id, None)

    async def get_project(self, project_id: str) -> ProjectSnapshot:
        snapshot = self._projects.get(project_id)
        if snapshot is None or not snapshot.files:
            raise NotFoundError("Project not found or has no files", project_id=project_id)
        return snapshot
