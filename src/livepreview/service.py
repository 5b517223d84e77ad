# src/livepreview/service.py
"""
Live preview service: the orchestration API surface.

``LivePreviewService`` wires the registry, port allocator, runtime, health
monitor, error detector, lifecycle manager and cleanup scheduler
together, and exposes the operations used by HTTP handlers and by
in-process callers such as an auto-fix loop.

Usage:
    >>> source = InMemoryProjectSource()
    >>> source.put("p1", {"package.json": "...", "src/App.js": "..."}, "react")
    >>> service = LivePreviewService(project_source=source)
    >>> await service.start()
    >>> preview = await service.create_preview("p1", user_id="u1")
    >>> preview.status
    <PreviewStatus.STARTING: 'starting'>
    >>> await service.shutdown()
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable

from .cleanup import CleanupScheduler
from .config import LivePreviewConfig, load_config
from .detection import ErrorDetector
from .exceptions import LivePreviewError, NotFoundError
from .health import HealthMonitor, build_diagnostics
from .lifecycle import LifecycleManager
from .models import ErrorAnalysis, PreviewOptions, PreviewSandbox, PreviewStatus, utcnow
from .ports import PortAllocator
from .registry import PreviewRegistry
from .runtime.base import ContainerRuntime
from .runtime.docker_runtime import DockerContainerRuntime
from .snapshots import InMemoryProjectSource, ProjectSource

logger = logging.getLogger(__name__)


class LivePreviewService:
    """
    Facade over all live preview components.

    Args:
        config: Configuration (loaded with ``load_config()`` when omitted)
        runtime: Container runtime (Docker when omitted)
        project_source: Where project files come from
        prober: Health probe implementation (HTTP HEAD when omitted)
        sleep: Awaitable sleep shared by the background loops
        clock: Current time source for idle checks
        port_probe: Replacement for the OS bind probe
    """

    def __init__(
        self,
        config: LivePreviewConfig | None = None,
        runtime: ContainerRuntime | None = None,
        project_source: ProjectSource | None = None,
        prober=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
        port_probe: Callable[[int], bool] | None = None,
    ):
        self.config = config or load_config()
        if runtime is None:
            runtime = DockerContainerRuntime(self.config.docker)
        self.runtime = runtime
        self.project_source = project_source or InMemoryProjectSource()

        self.registry = PreviewRegistry()
        self.allocator = PortAllocator(
            start=self.config.ports.start,
            end=self.config.ports.end,
            runtime=self.runtime,
            bind_host=self.config.ports.bind_host,
            probe=port_probe,
        )
        self.detector = ErrorDetector.from_config(self.config.detection)
        self.monitor = HealthMonitor(
            self.registry,
            self.runtime,
            detector=self.detector,
            config=self.config.health,
            prober=prober,
            sleep=sleep,
            logs_tail=self.config.docker.logs_tail,
        )
        self.lifecycle = LifecycleManager(
            self.registry, self.allocator, self.runtime, self.monitor, self.config
        )
        self.scheduler = CleanupScheduler(
            self.registry, self.lifecycle, self.runtime, self.config, clock=clock, sleep=sleep
        )
        self._started = False

    async def start(self) -> None:
        """Run the orphan sweep (if enabled) and start the idle sweep loop."""
        if self._started:
            return
        if self.config.cleanup.startup_sweep:
            await self.scheduler.startup_sweep()
        await self.scheduler.start()
        self._started = True
        logger.info("Live preview service started")

    async def shutdown(self) -> None:
        """Stop background work and, if configured, every preview."""
        await self.scheduler.stop()
        if self.config.previews.stop_on_shutdown:
            stopped = await self.lifecycle.stop_all()
            if stopped:
                logger.info(f"Stopped {stopped} preview(s) on shutdown")
        await self.monitor.close()
        await self.runtime.close()
        self._started = False
        logger.info("Live preview service shut down")

    # ------------------------------------------------------------------
    # Preview operations
    # ------------------------------------------------------------------

    async def create_preview(
        self,
        project_id: str,
        user_id: str | None = None,
        options: PreviewOptions | None = None,
    ) -> PreviewSandbox:
        """
        Start (or return) the preview of a project.

        Files and runtime kind come from the project source.

        Raises:
            NotFoundError: If the project is unknown
            AllocationError, BuildError, RuntimeStartError: On creation failure
        """
        existing = self.registry.get(project_id)
        if existing is not None and existing.is_active:
            async with self.registry.locked(project_id):
                if self.registry.is_current(existing):
                    existing.touch()
                    return existing

        snapshot = await self.project_source.get_project(project_id)
        return await self.lifecycle.create_preview(
            project_id,
            snapshot.files,
            runtime_kind=snapshot.runtime_kind,
            options=options,
            user_id=user_id,
        )

    async def get_preview(self, project_id: str) -> PreviewSandbox:
        """
        Return a preview and refresh its last access time.

        A ``running`` preview whose container has died moves to ``error``.

        Raises:
            NotFoundError: If the project has no preview
        """
        sandbox = self.registry.get(project_id)
        if sandbox is None:
            raise NotFoundError("Preview not found", project_id=project_id)

        alive = True
        logs = ""
        if sandbox.status == PreviewStatus.RUNNING:
            try:
                alive = await self.runtime.is_running(sandbox.runtime_handle)
                if not alive:
                    logs = await self.runtime.logs(sandbox.runtime_handle)
            except LivePreviewError as e:
                logger.warning(f"Health check for project {project_id} failed: {e}")

        async with self.registry.locked(project_id):
            if not self.registry.is_current(sandbox):
                raise NotFoundError("Preview not found", project_id=project_id)
            sandbox.touch()
            if not alive and sandbox.status == PreviewStatus.RUNNING:
                if logs:
                    sandbox.append_logs(logs.splitlines())
                    sandbox.replace_errors(self.detector.scan(logs, sandbox.runtime_handle))
                sandbox.record_failure("Container stopped unexpectedly")
                sandbox.transition(PreviewStatus.ERROR)
                sandbox.diagnostics = build_diagnostics(sandbox, 0, "Container stopped unexpectedly")
                logger.warning(f"Preview for project {project_id} is no longer running")
        return sandbox

    async def update_preview(self, project_id: str) -> PreviewSandbox:
        """
        Sync the project's current files into its running preview.

        Raises:
            NotFoundError: If the project has no preview or no files
        """
        if self.registry.get(project_id) is None:
            raise NotFoundError("Preview not found", project_id=project_id)
        snapshot = await self.project_source.get_project(project_id)
        return await self.lifecycle.update_preview(project_id, snapshot.files)

    async def stop_preview(self, project_id: str) -> None:
        """
        Stop a preview.

        Raises:
            NotFoundError: If the project has no preview (also on a second call)
        """
        await self.lifecycle.stop_preview(project_id)

    def list_previews(self) -> list[PreviewSandbox]:
        return self.registry.list_active()

    # ------------------------------------------------------------------
    # Container operations
    # ------------------------------------------------------------------

    def _touch_owner(self, runtime_handle: str) -> PreviewSandbox | None:
        owner = self.registry.get_by_handle(runtime_handle)
        if owner is not None:
            owner.touch()
        return owner

    async def get_container_logs(self, runtime_handle: str, tail: int | None = None) -> str:
        self._touch_owner(runtime_handle)
        return await self.runtime.logs(runtime_handle, tail=tail)

    async def execute_in_container(self, runtime_handle: str, command: str) -> str:
        if not command or not command.strip():
            raise LivePreviewError("Command must not be empty")
        self._touch_owner(runtime_handle)
        logger.info(f"Executing in {runtime_handle[:12]}: {command[:200]}")
        return await self.runtime.exec(runtime_handle, command)

    async def get_container_info(self, runtime_handle: str) -> dict[str, Any]:
        """Engine metadata, recent logs, liveness and the owning preview, if any."""
        owner = self._touch_owner(runtime_handle)
        attrs = await self.runtime.inspect(runtime_handle)
        logs = await self.runtime.logs(runtime_handle, tail=100)
        running = await self.runtime.is_running(runtime_handle)
        return {
            "runtime_handle": runtime_handle,
            "running": running,
            "info": attrs,
            "logs": logs,
            "preview": owner.to_dict(include_logs=False) if owner else None,
        }

    # ------------------------------------------------------------------
    # Error detection
    # ------------------------------------------------------------------

    def analyze(self, errors) -> ErrorAnalysis:
        return self.detector.analyze(errors)

    async def detect_errors(self, runtime_handle: str) -> ErrorAnalysis:
        """
        Scan the container's current logs.

        The result replaces the stored errors of the owning preview.
        """
        logs = await self.runtime.logs(runtime_handle)
        errors = self.detector.scan(logs, source_container_id=runtime_handle)

        owner = self.registry.get_by_handle(runtime_handle)
        if owner is not None:
            async with self.registry.locked(owner.project_id):
                if self.registry.is_current(owner):
                    owner.replace_errors(errors)

        return self.detector.analyze(errors)

    async def get_error_analysis(self, runtime_handle: str) -> ErrorAnalysis:
        """Analysis of the stored errors, scanning fresh when none were stored yet."""
        owner = self.registry.get_by_handle(runtime_handle)
        if owner is not None and owner.last_error_scan_at is not None:
            return self.detector.analyze(owner.errors)
        return await self.detect_errors(runtime_handle)

    async def update_container_errors(self, project_id: str) -> ErrorAnalysis:
        """
        Rescan a preview's logs and fail it on a critical error.

        Raises:
            NotFoundError: If the project has no preview
        """
        sandbox = self.registry.get(project_id)
        if sandbox is None:
            raise NotFoundError("Preview not found", project_id=project_id)

        analysis = await self.detect_errors(sandbox.runtime_handle)
        if not analysis.has_critical:
            return analysis

        async with self.registry.locked(project_id):
            if not self.registry.is_current(sandbox):
                return analysis
            if sandbox.status in (PreviewStatus.STARTING, PreviewStatus.RUNNING):
                await self.monitor.cancel(project_id)
                sandbox.record_failure(analysis.most_critical_error.message)
                sandbox.transition(PreviewStatus.ERROR)
                sandbox.diagnostics = {
                    "reason": analysis.most_critical_error.message,
                    "runtime_handle": sandbox.runtime_handle,
                    "port": sandbox.port,
                    "summary": analysis.summary,
                    "errors": [e.to_dict() for e in analysis.errors],
                    "recorded_at": utcnow().isoformat(),
                }
                logger.warning(
                    f"Preview for project {project_id} failed: {analysis.most_critical_error.message}"
                )
        return analysis
