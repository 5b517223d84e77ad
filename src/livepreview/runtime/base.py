# src/livepreview/runtime/base.py
"""
Abstract container runtime.

Lifecycle, health and cleanup components talk to the container engine
only through ``ContainerRuntime``. The production implementation wraps the
Docker SDK; tests use an in-memory fake.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass
class ContainerInfo:
    """
    Snapshot of one container as reported by ``list_running``.

    Attributes:
        handle: Container id
        name: Container name
        status: Engine status string ("running", "exited", ...)
        image: Image reference the container was started from
        labels: Container labels
        ports: Host ports published by the container
    """

    handle: str
    name: str
    status: str = "running"
    image: str | None = None
    labels: dict[str, str] = field(default_factory=dict)
    ports: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "handle": self.handle,
            "name": self.name,
            "status": self.status,
            "image": self.image,
            "labels": dict(self.labels),
            "ports": list(self.ports),
        }


class ContainerRuntime(ABC):
    """
    Uniform operations against the local container engine.

    Every implementation must bound each call with a timeout: builds may
    take minutes, everything else a few seconds. Timeouts surface as
    ``BuildError`` for builds and ``ContainerRuntimeError`` otherwise.
    """

    @abstractmethod
    async def build(self, context_dir: Path, descriptor: str, tag: str) -> str:
        """
        Build an image from ``context_dir``.

        Args:
            context_dir: Directory holding the project files
            descriptor: Dockerfile text; written into the context before building
            tag: Image tag to apply

        Returns:
            Image reference usable with ``run``

        Raises:
            BuildError: If the build fails or times out
        """
        pass

    @abstractmethod
    async def run(
        self,
        image_ref: str,
        host_port: int,
        name: str,
        container_port: int | None = None,
        labels: dict[str, str] | None = None,
        environment: dict[str, str] | None = None,
    ) -> str:
        """
        Start a detached container publishing ``host_port``.

        Any existing container named ``name`` is stopped and removed first.

        Args:
            image_ref: Image to run
            host_port: Host port to publish
            name: Container name
            container_port: Port inside the container (defaults to host_port)
            labels: Labels to attach
            environment: Extra environment variables

        Returns:
            Runtime handle (container id)

        Raises:
            RuntimeStartError: If the container cannot be started
        """
        pass

    @abstractmethod
    async def stop(self, handle: str) -> None:
        """Stop a container. Unknown handles are ignored."""
        pass

    @abstractmethod
    async def remove(self, handle: str) -> None:
        """Force-remove a container. Unknown handles are ignored."""
        pass

    @abstractmethod
    async def remove_image(self, image_ref: str) -> None:
        """Remove an image. Unknown images are ignored."""
        pass

    @abstractmethod
    async def logs(self, handle: str, tail: int | None = None) -> str:
        """
        Return combined stdout/stderr of a container.

        Raises:
            NotFoundError: If the container does not exist
        """
        pass

    @abstractmethod
    async def list_running(self, filters: dict[str, Any] | None = None) -> list[ContainerInfo]:
        """
        List running containers matching ``filters``.

        Supported filter keys: ``id``, ``name``, ``label``.
        """
        pass

    @abstractmethod
    async def exec(self, handle: str, command: str) -> str:
        """
        Run a shell command inside a container and return its output.

        Raises:
            NotFoundError: If the container does not exist
            ContainerRuntimeError: If the command cannot be executed
        """
        pass

    @abstractmethod
    async def inspect(self, handle: str) -> dict[str, Any]:
        """
        Return engine metadata for a container.

        Raises:
            NotFoundError: If the container does not exist
        """
        pass

    @abstractmethod
    async def published_ports(self) -> set[int]:
        """Host ports published by any running container."""
        pass

    async def is_running(self, handle: str) -> bool:
        return bool(await self.list_running({"id": handle}))

    async def close(self) -> None:
        """Release client resources."""
        pass
