# src/livepreview/runtime/docker_runtime.py
"""
Docker-backed container runtime using the docker-py SDK.

docker-py is synchronous, so every call runs in the default executor and
is bounded with ``asyncio.wait_for``. A timed-out call keeps running in its
worker thread but the caller is released.

Usage:
    >>> runtime = DockerContainerRuntime()
    >>> image = await runtime.build(Path("/tmp/app"), dockerfile, "livepreview-p1:1")
    >>> handle = await runtime.run(image, 4000, "livepreview-p1")
    >>> print(await runtime.logs(handle))
    >>> await runtime.stop(handle)
    >>> await runtime.remove(handle)

Requirements:
    - docker-py package (pip install docker)
    - Docker daemon running and accessible
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.errors import BuildError as DockerBuildError

from ..config import DockerConfig
from ..exceptions import BuildError, ContainerRuntimeError, NotFoundError, RuntimeStartError
from .base import ContainerInfo, ContainerRuntime

logger = logging.getLogger(__name__)

# Maximum output size returned from logs/exec before truncation (100KB)
MAX_OUTPUT_SIZE = 100_000


def _decode(output: bytes | str | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")
    if len(output) > MAX_OUTPUT_SIZE:
        output = output[-MAX_OUTPUT_SIZE:]
    return output


def _host_ports(attrs: dict[str, Any]) -> list[int]:
    """Extract published host ports from container attrs."""
    ports = set()
    bindings = (attrs.get("NetworkSettings") or {}).get("Ports") or {}
    for entries in bindings.values():
        for entry in entries or []:
            host_port = entry.get("HostPort")
            if host_port:
                ports.add(int(host_port))
    # Summary-style listings use a flat list instead
    for entry in attrs.get("Ports") or []:
        if isinstance(entry, dict) and entry.get("PublicPort"):
            ports.add(int(entry["PublicPort"]))
    return sorted(ports)


def _build_log_text(build_log: Any) -> str:
    lines = []
    for chunk in build_log or []:
        if isinstance(chunk, dict):
            text = chunk.get("stream") or chunk.get("error") or ""
        else:
            text = str(chunk)
        if text:
            lines.append(text.rstrip("\n"))
    return "\n".join(lines)


class DockerContainerRuntime(ContainerRuntime):
    """
    Container runtime talking to a Docker daemon.

    Attributes:
        _client: docker.DockerClient instance
        _config: Timeouts and naming settings
    """

    def __init__(
        self,
        config: DockerConfig | None = None,
        client: Any | None = None,
    ):
        """
        Initialize the runtime.

        Args:
            config: Docker section of the live preview config
            client: Pre-built docker client (tests inject a mock here)

        Raises:
            ContainerRuntimeError: If the daemon cannot be reached
        """
        self._config = config or DockerConfig()
        self._client = client if client is not None else self._connect_docker()

    def _connect_docker(self) -> Any:
        """
        Connect to the Docker daemon.

        Raises:
            ContainerRuntimeError: If connection fails
        """
        try:
            if self._config.host:
                client = docker.DockerClient(base_url=self._config.host)
                logger.info(f"Connected to remote Docker: {self._config.host}")
            else:
                client = docker.from_env()
                logger.debug("Connected to local Docker daemon")

            version = client.version()
            logger.info(f"Docker version: {version.get('Version', 'unknown')}")
            return client

        except DockerException as e:
            raise ContainerRuntimeError(
                f"Failed to connect to Docker daemon: {e}",
                operation="connect",
                details={"host": self._config.host or "local"},
            ) from e

    async def _call(self, fn: Callable[[], Any], timeout: float) -> Any:
        return await asyncio.wait_for(
            asyncio.get_event_loop().run_in_executor(None, fn), timeout=timeout
        )

    async def _get_container(self, handle: str, operation: str) -> Any:
        try:
            return await self._call(
                lambda: self._client.containers.get(handle), self._config.logs_timeout
            )
        except NotFound as e:
            raise NotFoundError(f"Container not found: {handle}", details={"handle": handle}) from e
        except TimeoutError as e:
            raise ContainerRuntimeError(
                f"Timed out looking up container {handle}",
                operation=operation,
                timeout_seconds=self._config.logs_timeout,
            ) from e
        except DockerException as e:
            raise ContainerRuntimeError(
                f"Failed to look up container {handle}: {e}", operation=operation
            ) from e

    async def build(self, context_dir: Path, descriptor: str, tag: str) -> str:
        context_dir = Path(context_dir)
        (context_dir / "Dockerfile").write_text(descriptor, encoding="utf-8")
        timeout = self._config.build_timeout

        logger.info(f"Building image '{tag}' from {context_dir}")
        try:
            image, _ = await self._call(
                lambda: self._client.images.build(
                    path=str(context_dir),
                    tag=tag,
                    rm=True,
                    forcerm=True,
                    labels={self._config.managed_label: "true"},
                ),
                timeout,
            )
        except TimeoutError as e:
            raise BuildError(
                f"Image build timed out after {timeout}s",
                timeout_seconds=timeout,
                details={"tag": tag},
            ) from e
        except DockerBuildError as e:
            raise BuildError(
                f"Image build failed: {e.msg}",
                build_log=_build_log_text(e.build_log),
                details={"tag": tag},
            ) from e
        except DockerException as e:
            raise BuildError(f"Image build failed: {e}", details={"tag": tag}) from e

        logger.info(f"Built image '{tag}' ({getattr(image, 'short_id', image)})")
        return tag

    async def run(
        self,
        image_ref: str,
        host_port: int,
        name: str,
        container_port: int | None = None,
        labels: dict[str, str] | None = None,
        environment: dict[str, str] | None = None,
    ) -> str:
        container_port = container_port or host_port
        await self._remove_by_name(name)

        all_labels = {self._config.managed_label: "true"}
        all_labels.update(labels or {})
        env = {"PORT": str(container_port)}
        env.update(environment or {})
        timeout = self._config.run_timeout

        try:
            container = await self._call(
                lambda: self._client.containers.run(
                    image_ref,
                    detach=True,
                    remove=False,  # keep exited containers so their logs stay readable
                    name=name,
                    ports={f"{container_port}/tcp": host_port},
                    labels=all_labels,
                    environment=env,
                ),
                timeout,
            )
        except TimeoutError as e:
            raise RuntimeStartError(
                f"Container start timed out after {timeout}s",
                operation="run",
                timeout_seconds=timeout,
                details={"name": name, "port": host_port},
            ) from e
        except DockerException as e:
            raise RuntimeStartError(
                f"Failed to start container: {e}",
                operation="run",
                details={"name": name, "port": host_port},
            ) from e

        logger.info(f"Started container {name} ({container.short_id}) on port {host_port}")
        return container.id

    async def _remove_by_name(self, name: str) -> None:
        """Stop and remove a leftover container with the same name."""
        try:
            existing = await self._call(
                lambda: self._client.containers.get(name), self._config.stop_timeout
            )
        except NotFound:
            return
        except (TimeoutError, DockerException) as e:
            logger.warning(f"Could not check for existing container '{name}': {e}")
            return

        logger.info(f"Removing existing container '{name}' before start")
        await self.stop(existing.id)
        await self.remove(existing.id)

    async def stop(self, handle: str) -> None:
        timeout = self._config.stop_timeout
        try:
            container = await self._call(lambda: self._client.containers.get(handle), timeout)
            await self._call(lambda: container.stop(timeout=int(timeout)), timeout + 5)
            logger.debug(f"Stopped container {handle[:12]}")
        except NotFound:
            logger.debug(f"Container {handle[:12]} already gone")
        except TimeoutError as e:
            raise ContainerRuntimeError(
                f"Timed out stopping container {handle[:12]}",
                operation="stop",
                timeout_seconds=timeout,
            ) from e
        except DockerException as e:
            raise ContainerRuntimeError(
                f"Failed to stop container {handle[:12]}: {e}", operation="stop"
            ) from e

    async def remove(self, handle: str) -> None:
        timeout = self._config.remove_timeout
        try:
            container = await self._call(lambda: self._client.containers.get(handle), timeout)
            await self._call(lambda: container.remove(force=True), timeout)
            logger.debug(f"Removed container {handle[:12]}")
        except NotFound:
            logger.debug(f"Container {handle[:12]} already removed")
        except TimeoutError as e:
            raise ContainerRuntimeError(
                f"Timed out removing container {handle[:12]}",
                operation="remove",
                timeout_seconds=timeout,
            ) from e
        except APIError as e:
            # removal already in progress
            if e.status_code == 409:
                logger.debug(f"Container {handle[:12]} removal already in progress")
                return
            raise ContainerRuntimeError(
                f"Failed to remove container {handle[:12]}: {e}", operation="remove"
            ) from e
        except DockerException as e:
            raise ContainerRuntimeError(
                f"Failed to remove container {handle[:12]}: {e}", operation="remove"
            ) from e

    async def remove_image(self, image_ref: str) -> None:
        timeout = self._config.remove_timeout
        try:
            await self._call(lambda: self._client.images.remove(image_ref, force=True), timeout)
            logger.debug(f"Removed image {image_ref}")
        except ImageNotFound:
            logger.debug(f"Image {image_ref} already removed")
        except TimeoutError as e:
            raise ContainerRuntimeError(
                f"Timed out removing image {image_ref}",
                operation="remove_image",
                timeout_seconds=timeout,
            ) from e
        except DockerException as e:
            raise ContainerRuntimeError(
                f"Failed to remove image {image_ref}: {e}", operation="remove_image"
            ) from e

    async def logs(self, handle: str, tail: int | None = None) -> str:
        container = await self._get_container(handle, "logs")
        tail = tail if tail is not None else self._config.logs_tail
        timeout = self._config.logs_timeout
        try:
            output = await self._call(
                lambda: container.logs(stdout=True, stderr=True, tail=tail), timeout
            )
        except TimeoutError as e:
            raise ContainerRuntimeError(
                f"Timed out reading logs of {handle[:12]}",
                operation="logs",
                timeout_seconds=timeout,
            ) from e
        except DockerException as e:
            raise ContainerRuntimeError(
                f"Failed to read logs of {handle[:12]}: {e}", operation="logs"
            ) from e
        return _decode(output)

    async def list_running(self, filters: dict[str, Any] | None = None) -> list[ContainerInfo]:
        query = {"status": "running"}
        query.update(filters or {})
        timeout = self._config.logs_timeout
        try:
            containers = await self._call(
                lambda: self._client.containers.list(filters=query), timeout
            )
        except TimeoutError as e:
            raise ContainerRuntimeError(
                "Timed out listing containers", operation="list", timeout_seconds=timeout
            ) from e
        except DockerException as e:
            raise ContainerRuntimeError(f"Failed to list containers: {e}", operation="list") from e

        return [self._to_info(c) for c in containers]

    @staticmethod
    def _to_info(container: Any) -> ContainerInfo:
        attrs = container.attrs or {}
        return ContainerInfo(
            handle=container.id,
            name=container.name,
            status=container.status,
            image=(attrs.get("Config") or {}).get("Image"),
            labels=dict(container.labels or {}),
            ports=_host_ports(attrs),
        )

    async def exec(self, handle: str, command: str) -> str:
        container = await self._get_container(handle, "exec")
        timeout = self._config.exec_timeout
        try:
            exit_code, output = await self._call(
                lambda: container.exec_run(cmd=["sh", "-c", command], stdout=True, stderr=True),
                timeout,
            )
        except TimeoutError as e:
            raise ContainerRuntimeError(
                f"Command timed out after {timeout}s",
                operation="exec",
                timeout_seconds=timeout,
                details={"command": command[:200]},
            ) from e
        except DockerException as e:
            raise ContainerRuntimeError(
                f"Failed to execute command: {e}",
                operation="exec",
                details={"command": command[:200]},
            ) from e

        if exit_code:
            logger.debug(f"Command in {handle[:12]} exited with {exit_code}")
        return _decode(output)

    async def inspect(self, handle: str) -> dict[str, Any]:
        container = await self._get_container(handle, "inspect")
        return dict(container.attrs or {})

    async def published_ports(self) -> set[int]:
        ports: set[int] = set()
        for info in await self.list_running():
            ports.update(info.ports)
        return ports

    async def close(self) -> None:
        try:
            self._client.close()
        except DockerException as e:
            logger.warning(f"Error closing Docker client: {e}")
