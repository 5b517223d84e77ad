# tests/conftest.py
"""
Pytest fixtures and fakes for live preview tests.

This module provides:
    - FakeContainerRuntime: in-memory ContainerRuntime
    - FakeProber: scripted health probe
    - Test configuration with a temporary staging directory and no delays
    - Wired registry / allocator / monitor / lifecycle / service fixtures
"""

import asyncio
import uuid
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from livepreview.config import (
    CleanupConfig,
    HealthConfig,
    LivePreviewConfig,
    PortsConfig,
    PreviewsConfig,
)
from livepreview.detection import ErrorDetector
from livepreview.exceptions import NotFoundError
from livepreview.health import HealthMonitor
from livepreview.lifecycle import LifecycleManager
from livepreview.logging_config import LoggingManager
from livepreview.ports import PortAllocator
from livepreview.registry import PreviewRegistry
from livepreview.runtime.base import ContainerInfo, ContainerRuntime
from livepreview.service import LivePreviewService
from livepreview.snapshots import InMemoryProjectSource

REACT_FILES = {
    "package.json": '{"name": "todo", "scripts": {"start": "react-scripts start"}}',
    "src/App.js": "export default function App() { return null; }",
    "public/index.html": "<div id='root'></div>",
}


# ==============================================================================
# Fakes
# ==============================================================================


class FakeContainerRuntime(ContainerRuntime):
    """
    In-memory container runtime.

    Containers live in ``containers`` keyed by a 64-char hex handle. Set
    ``build_error`` / ``run_error`` to make the next calls fail, and put
    log text in ``log_text[handle]``.
    """

    def __init__(self):
        self.containers: dict[str, ContainerInfo] = {}
        self.images: set[str] = set()
        self.log_text: dict[str, str] = {}
        self.build_error: Exception | None = None
        self.run_error: Exception | None = None
        self.list_error: Exception | None = None
        self.builds: list[tuple[Path, str, str]] = []
        self.runs: list[dict[str, Any]] = []
        self.stopped: list[str] = []
        self.removed: list[str] = []
        self.removed_images: list[str] = []
        self.exec_calls: list[tuple[str, str]] = []
        self.closed = False

    def add_container(
        self,
        name: str,
        labels: dict[str, str] | None = None,
        ports: list[int] | None = None,
        status: str = "running",
    ) -> str:
        handle = uuid.uuid4().hex + uuid.uuid4().hex
        self.containers[handle] = ContainerInfo(
            handle=handle,
            name=name,
            status=status,
            labels=dict(labels or {}),
            ports=list(ports or []),
        )
        return handle

    def kill(self, handle: str) -> None:
        self.containers[handle].status = "exited"

    async def build(self, context_dir, descriptor, tag):
        if self.build_error is not None:
            raise self.build_error
        self.builds.append((Path(context_dir), descriptor, tag))
        self.images.add(tag)
        return tag

    async def run(
        self, image_ref, host_port, name, container_port=None, labels=None, environment=None
    ):
        for handle, info in list(self.containers.items()):
            if info.name == name:
                del self.containers[handle]
        if self.run_error is not None:
            raise self.run_error
        self.runs.append(
            {
                "image_ref": image_ref,
                "host_port": host_port,
                "name": name,
                "container_port": container_port,
                "labels": dict(labels or {}),
            }
        )
        handle = self.add_container(name, labels=labels, ports=[host_port])
        self.containers[handle].image = image_ref
        return handle

    async def stop(self, handle):
        self.stopped.append(handle)
        if handle in self.containers:
            self.containers[handle].status = "exited"

    async def remove(self, handle):
        self.removed.append(handle)
        self.containers.pop(handle, None)

    async def remove_image(self, image_ref):
        self.removed_images.append(image_ref)
        self.images.discard(image_ref)

    async def logs(self, handle, tail=None):
        if handle not in self.containers:
            raise NotFoundError(f"Container not found: {handle}")
        text = self.log_text.get(handle, "")
        if tail:
            return "\n".join(text.splitlines()[-tail:])
        return text

    async def list_running(self, filters=None):
        if self.list_error is not None:
            raise self.list_error
        filters = filters or {}
        result = []
        for info in self.containers.values():
            if info.status != "running":
                continue
            if "id" in filters and not info.handle.startswith(filters["id"]):
                continue
            if "name" in filters and info.name != filters["name"]:
                continue
            result.append(info)
        return result

    async def exec(self, handle, command):
        if handle not in self.containers:
            raise NotFoundError(f"Container not found: {handle}")
        self.exec_calls.append((handle, command))
        return f"ran: {command}\n"

    async def inspect(self, handle):
        info = self.containers.get(handle)
        if info is None:
            raise NotFoundError(f"Container not found: {handle}")
        return {"Id": handle, "Name": f"/{info.name}", "State": {"Status": info.status}}

    async def published_ports(self):
        ports = set()
        for info in await self.list_running():
            ports.update(info.ports)
        return ports

    async def close(self):
        self.closed = True


class FakeProber:
    """
    Scripted reachability probe.

    ``results`` are consumed one per probe call; once exhausted every probe
    returns ``default``.
    """

    def __init__(self, results: list[bool] | None = None, default: bool = False):
        self.results = list(results or [])
        self.default = default
        self.calls: list[str] = []
        self.closed = False

    async def probe(self, url: str) -> bool:
        self.calls.append(url)
        if self.results:
            return self.results.pop(0)
        return self.default

    async def close(self) -> None:
        self.closed = True


async def fast_sleep(seconds: float) -> None:
    """Yield instead of waiting; long waits (background sweeps) still block."""
    if seconds >= 60:
        await asyncio.sleep(seconds)
    else:
        await asyncio.sleep(0)


async def settle(monitor: HealthMonitor, project_id: str) -> None:
    """Wait for the project's health task to finish, if one is running."""
    task = monitor.task_for(project_id)
    if task is not None:
        await task


# ==============================================================================
# Configuration Fixtures
# ==============================================================================


@pytest.fixture
def config(tmp_path) -> LivePreviewConfig:
    """Small port range, zero delays, staging under tmp_path."""
    return LivePreviewConfig(
        ports=PortsConfig(start=4000, end=4004),
        health=HealthConfig(
            initial_delay=0,
            interval=0,
            max_attempts=5,
            scan_every=2,
            probe_paths=["/"],
        ),
        cleanup=CleanupConfig(interval_seconds=3600, idle_minutes=30, startup_sweep=False),
        previews=PreviewsConfig(base_dir=str(tmp_path / "previews")),
    )


@pytest.fixture
def reset_logging():
    """Reset the logging manager singleton between tests."""
    LoggingManager.reset()
    yield
    LoggingManager.reset()


# ==============================================================================
# Component Fixtures
# ==============================================================================


@pytest.fixture
def fake_runtime() -> FakeContainerRuntime:
    return FakeContainerRuntime()


@pytest.fixture
def prober() -> FakeProber:
    return FakeProber()


@pytest.fixture
def registry() -> PreviewRegistry:
    return PreviewRegistry()


@pytest.fixture
def allocator(config, fake_runtime) -> PortAllocator:
    return PortAllocator(
        start=config.ports.start,
        end=config.ports.end,
        runtime=fake_runtime,
        probe=lambda port: True,
    )


@pytest_asyncio.fixture
async def monitor(registry, fake_runtime, config, prober):
    monitor = HealthMonitor(
        registry,
        fake_runtime,
        detector=ErrorDetector(),
        config=config.health,
        prober=prober,
        sleep=fast_sleep,
    )
    yield monitor
    await monitor.cancel_all()


@pytest.fixture
def lifecycle(registry, allocator, fake_runtime, monitor, config) -> LifecycleManager:
    return LifecycleManager(registry, allocator, fake_runtime, monitor, config)


@pytest.fixture
def project_source() -> InMemoryProjectSource:
    source = InMemoryProjectSource()
    source.put("todo", REACT_FILES, runtime_kind="react-todo")
    return source


@pytest_asyncio.fixture
async def service(config, fake_runtime, project_source, prober):
    service = LivePreviewService(
        config=config,
        runtime=fake_runtime,
        project_source=project_source,
        prober=prober,
        sleep=fast_sleep,
        port_probe=lambda port: True,
    )
    yield service
    await service.scheduler.stop()
    await service.monitor.cancel_all()
