# src/livepreview/cleanup.py
"""
Orphan and idle preview cleanup.

Two sweeps:

    startup_sweep  - removes containers left behind by a previous process:
                     anything carrying the managed label, named with the
                     managed prefix, or publishing a port in the managed range
    sweep          - stops registered previews idle for longer than their
                     threshold; runs on a fixed interval once ``start()``
                     has been awaited

Example:
    scheduler = CleanupScheduler(registry, lifecycle, runtime, config)
    await scheduler.startup_sweep()
    await scheduler.start()
    ...
    await scheduler.stop()
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from .config import LivePreviewConfig
from .exceptions import LivePreviewError, NotFoundError
from .lifecycle import LifecycleManager
from .models import PreviewSandbox, utcnow
from .registry import PreviewRegistry
from .runtime.base import ContainerInfo, ContainerRuntime

logger = logging.getLogger(__name__)

# Name prefix used by earlier deployments; still swept at startup
LEGACY_NAME_PREFIX = "preview-"


class CleanupScheduler:
    """
    Periodic idle sweep plus a one-shot orphan sweep.

    Args:
        registry: Registry of active previews
        lifecycle: Used to stop idle previews exactly like an explicit stop
        runtime: Container runtime for the orphan sweep
        config: Full live preview configuration
        clock: Returns the current aware datetime
        sleep: Awaitable sleep, replaceable in tests
    """

    def __init__(
        self,
        registry: PreviewRegistry,
        lifecycle: LifecycleManager,
        runtime: ContainerRuntime,
        config: LivePreviewConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._registry = registry
        self._lifecycle = lifecycle
        self._runtime = runtime
        self._config = config or LivePreviewConfig()
        self._clock = clock
        self._sleep = sleep
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self.last_sweep_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    def idle_threshold(self, sandbox: PreviewSandbox) -> timedelta:
        minutes = sandbox.idle_timeout_minutes or self._config.cleanup.idle_minutes
        return timedelta(minutes=minutes)

    def is_idle(self, sandbox: PreviewSandbox, now: datetime | None = None) -> bool:
        """True when the preview may be reclaimed at ``now``."""
        if not sandbox.auto_cleanup:
            return False
        now = now or self._clock()
        return now - sandbox.last_accessed_at > self.idle_threshold(sandbox)

    def _is_managed(self, info: ContainerInfo) -> bool:
        docker = self._config.docker
        ports = self._config.ports
        if info.labels.get(docker.managed_label) == "true":
            return True
        if info.name.startswith(f"{docker.name_prefix}-") or info.name.startswith(LEGACY_NAME_PREFIX):
            return True
        return any(ports.start <= p <= ports.end for p in info.ports)

    async def startup_sweep(self) -> int:
        """
        Force-remove orphaned containers.

        Containers belonging to previews registered in this process are
        left alone. Per-container failures are logged and skipped.

        Returns:
            Number of containers removed
        """
        try:
            containers = await self._runtime.list_running()
        except LivePreviewError as e:
            logger.error(f"Startup sweep could not list containers: {e}")
            return 0

        known = {s.runtime_handle for s in self._registry.all()}
        removed = 0
        for info in containers:
            if info.handle in known or not self._is_managed(info):
                continue
            try:
                await self._runtime.stop(info.handle)
                await self._runtime.remove(info.handle)
                removed += 1
                logger.info(f"Removed orphaned container {info.name} ({info.handle[:12]})")
            except LivePreviewError as e:
                logger.warning(f"Failed to remove orphaned container {info.name}: {e}")

        if removed:
            logger.info(f"Startup sweep removed {removed} orphaned container(s)")
        return removed

    async def sweep(self) -> list[str]:
        """
        Stop every preview idle past its threshold.

        Idleness is re-checked under the project lock, so a preview touched
        while the sweep is running survives.

        Returns:
            Project ids that were stopped
        """
        now = self._clock()
        self.last_sweep_at = now
        stopped = []

        for sandbox in self._registry.all():
            if not self.is_idle(sandbox, now):
                continue
            project_id = sandbox.project_id
            try:
                if await self._lifecycle.stop_preview(
                    project_id, condition=lambda s: self.is_idle(s, now)
                ):
                    stopped.append(project_id)
                    logger.info(f"Stopped idle preview for project {project_id}")
            except NotFoundError:
                continue
            except Exception as e:
                logger.error(f"Failed to stop idle preview for project {project_id}: {e}")

        return stopped

    async def start(self) -> None:
        """Start the recurring sweep. Idempotent."""
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._sweep_loop(), name="livepreview-cleanup")
        logger.info(
            f"Cleanup scheduler started (interval: {self._config.cleanup.interval_seconds}s, "
            f"idle threshold: {self._config.cleanup.idle_minutes} min)"
        )

    async def stop(self) -> None:
        """Stop the recurring sweep and wait for the loop to exit."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        logger.info("Cleanup scheduler stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            await self._sleep(self._config.cleanup.interval_seconds)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Cleanup sweep failed: {e}", exc_info=True)
