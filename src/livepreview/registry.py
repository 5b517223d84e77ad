# src/livepreview/registry.py
"""
In-memory registry of active previews.

The registry is the single source of truth for project -> sandbox state.
Each project has its own ``asyncio.Lock``; every read-modify-write of a
sandbox happens inside ``registry.locked(project_id)``. Locks for
different projects are independent, so work on one project never blocks
another.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from .exceptions import LivePreviewError
from .models import PreviewSandbox, PreviewStatus

logger = logging.getLogger(__name__)


class PreviewRegistry:
    """
    Tracks at most one active PreviewSandbox per project.

    Example:
        >>> registry = PreviewRegistry()
        >>> async with registry.locked("p1"):
        ...     if registry.get("p1") is None:
        ...         registry.add(sandbox)
    """

    def __init__(self):
        self._entries: dict[str, PreviewSandbox] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        # holders plus waiters per lock
        self._lock_users: dict[str, int] = {}
        self._guard = asyncio.Lock()

    async def _lock_for(self, project_id: str) -> asyncio.Lock:
        async with self._guard:
            lock = self._locks.get(project_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[project_id] = lock
            self._lock_users[project_id] = self._lock_users.get(project_id, 0) + 1
            return lock

    def _release_lock(self, project_id: str) -> None:
        remaining = self._lock_users[project_id] - 1
        if remaining == 0 and project_id not in self._entries:
            del self._lock_users[project_id]
            del self._locks[project_id]
        else:
            self._lock_users[project_id] = remaining

    @asynccontextmanager
    async def locked(self, project_id: str) -> AsyncIterator[None]:
        """
        Hold the project's lock for the duration of the block.

        The lock is dropped once nobody holds or waits on it and the
        project has no registered preview.
        """
        lock = await self._lock_for(project_id)
        try:
            async with lock:
                yield
        finally:
            self._release_lock(project_id)

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    def get(self, project_id: str) -> PreviewSandbox | None:
        return self._entries.get(project_id)

    def get_by_handle(self, runtime_handle: str) -> PreviewSandbox | None:
        """Look up a sandbox by full container id or an unambiguous prefix of it."""
        matches = [
            s
            for s in self._entries.values()
            if s.runtime_handle == runtime_handle
            or (len(runtime_handle) >= 12 and s.runtime_handle.startswith(runtime_handle))
        ]
        return matches[0] if len(matches) == 1 else None

    def add(self, sandbox: PreviewSandbox) -> None:
        """
        Register a sandbox. Caller must hold the project's lock.

        Raises:
            LivePreviewError: If the project already has an active sandbox
        """
        existing = self._entries.get(sandbox.project_id)
        if existing is not None and existing.is_active:
            raise LivePreviewError(
                "Project already has an active preview",
                details={"existing_id": existing.id},
                project_id=sandbox.project_id,
            )
        self._entries[sandbox.project_id] = sandbox
        logger.debug(f"Registered preview {sandbox.id} for project {sandbox.project_id}")

    def remove(self, project_id: str) -> PreviewSandbox | None:
        sandbox = self._entries.pop(project_id, None)
        if sandbox is not None:
            logger.debug(f"Unregistered preview {sandbox.id} for project {project_id}")
        return sandbox

    def is_current(self, sandbox: PreviewSandbox) -> bool:
        """True if ``sandbox`` is still the registered entry for its project."""
        return self._entries.get(sandbox.project_id) is sandbox

    def list_active(self) -> list[PreviewSandbox]:
        return [s for s in self._entries.values() if s.status != PreviewStatus.STOPPED]

    def all(self) -> list[PreviewSandbox]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, project_id: str) -> bool:
        return project_id in self._entries
