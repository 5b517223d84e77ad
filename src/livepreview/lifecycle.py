# src/livepreview/lifecycle.py
"""
Preview lifecycle: create, update and stop.

``create_preview`` returns as soon as the container exists; readiness is
tracked afterwards by the HealthMonitor. Failures before that point roll
back everything acquired so far (port, staging directory, image,
container) and leave the registry untouched.
"""

import asyncio
import logging
import re
import shutil
import time
import uuid
from pathlib import Path
from typing import Any, Callable

import aiofiles
import aiofiles.os as aios

from .config import LivePreviewConfig
from .descriptors import RuntimeKind, render_compose, render_dockerfile, render_dockerignore
from .exceptions import LivePreviewError, NotFoundError, RuntimeStartError, SnapshotError
from .health import HealthMonitor
from .logging_config import log_display
from .models import PreviewOptions, PreviewSandbox, PreviewStatus, ProjectFile
from .ports import PortAllocator
from .registry import PreviewRegistry
from .runtime.base import ContainerRuntime
from .snapshots import normalize_files

logger = logging.getLogger(__name__)

PROJECT_LABEL = "livepreview.project_id"
PREVIEW_LABEL = "livepreview.preview_id"


def _slug(value: str) -> str:
    """Lowercase name fragment valid in container names and image tags."""
    slug = re.sub(r"[^a-z0-9_.-]+", "-", value.lower()).strip("-.")
    return slug or "project"


class LifecycleManager:
    """
    Creates, updates and stops previews.

    Args:
        registry: Registry of active previews
        allocator: Port allocator for the managed range
        runtime: Container runtime
        monitor: Health monitor started for every new preview
        config: Full live preview configuration
    """

    def __init__(
        self,
        registry: PreviewRegistry,
        allocator: PortAllocator,
        runtime: ContainerRuntime,
        monitor: HealthMonitor,
        config: LivePreviewConfig | None = None,
    ):
        self._registry = registry
        self._allocator = allocator
        self._runtime = runtime
        self._monitor = monitor
        self._config = config or LivePreviewConfig()

    def container_name(self, project_id: str) -> str:
        return f"{self._config.docker.name_prefix}-{_slug(project_id)}"

    def _new_staging_dir(self, project_id: str) -> Path:
        base = self._config.previews.base_path
        millis = int(time.time() * 1000)
        return base / f"project-{_slug(project_id)}-{millis}"

    @staticmethod
    def _resolve_paths(staging_dir: Path, files: list[ProjectFile]) -> list[tuple[Path, str]]:
        root = staging_dir.resolve()
        resolved = []
        for f in files:
            relative = Path(f.path)
            if not f.path or relative.is_absolute():
                raise SnapshotError(f"Invalid project file path: {f.path!r}")
            target = (root / relative).resolve()
            if not target.is_relative_to(root) or target == root:
                raise SnapshotError(f"Project file path escapes staging directory: {f.path!r}")
            resolved.append((target, f.content))
        return resolved

    async def _materialize(self, staging_dir: Path, files: list[ProjectFile]) -> None:
        """Write project files into ``staging_dir``, validating every path first."""
        try:
            await aios.makedirs(staging_dir, exist_ok=True)
            targets = self._resolve_paths(staging_dir, files)
            for target, content in targets:
                await aios.makedirs(target.parent, exist_ok=True)
                async with aiofiles.open(target, mode="w", encoding="utf-8") as fh:
                    await fh.write(content)
        except OSError as e:
            raise SnapshotError(
                f"Failed to write project files to {staging_dir}: {e}",
                details={"staging_dir": str(staging_dir)},
            ) from e
        logger.debug(f"Wrote {len(files)} file(s) to {staging_dir}")

    async def _write_support_files(
        self, staging_dir: Path, kind: RuntimeKind, port: int, name: str
    ) -> None:
        support = {
            "docker-compose.yml": render_compose(kind, port, name),
            ".dockerignore": render_dockerignore(),
        }
        try:
            for filename, content in support.items():
                async with aiofiles.open(staging_dir / filename, mode="w", encoding="utf-8") as fh:
                    await fh.write(content)
        except OSError as e:
            raise SnapshotError(f"Failed to write build files to {staging_dir}: {e}") from e

    async def create_preview(
        self,
        project_id: str,
        files: Any,
        runtime_kind: "str | RuntimeKind" = RuntimeKind.NODE,
        options: PreviewOptions | None = None,
        user_id: str | None = None,
    ) -> PreviewSandbox:
        """
        Create a preview, or return the project's active one.

        Args:
            project_id: Project to preview
            files: Project files (see ``normalize_files`` for accepted shapes)
            runtime_kind: Project flavour selecting the Dockerfile template
            options: Cleanup options
            user_id: Requesting user, recorded on the sandbox

        Returns:
            The sandbox, in ``starting`` status when newly created

        Raises:
            AllocationError: If no port is free
            SnapshotError: If the files cannot be written
            BuildError: If the image build fails
            RuntimeStartError: If the container cannot be started
        """
        options = options or PreviewOptions()
        kind = RuntimeKind.parse(runtime_kind)

        async with self._registry.locked(project_id):
            existing = self._registry.get(project_id)
            if existing is not None and existing.is_active:
                existing.touch()
                logger.info(f"Reusing preview {existing.id} for project {project_id}")
                return existing

            project_files = normalize_files(files)
            port = await self._allocator.allocate()
            preview_id = str(uuid.uuid4())
            name = self.container_name(project_id)
            tag = f"{name}:{int(time.time() * 1000)}"
            staging_dir = self._new_staging_dir(project_id)
            image_ref = None
            handle = None

            try:
                await self._materialize(staging_dir, project_files)
                await self._write_support_files(staging_dir, kind, port, name)
                descriptor = render_dockerfile(kind, port)
                image_ref = await self._runtime.build(staging_dir, descriptor, tag)
                handle = await self._runtime.run(
                    image_ref,
                    port,
                    name,
                    container_port=port,
                    labels={
                        self._config.docker.managed_label: "true",
                        PROJECT_LABEL: project_id,
                        PREVIEW_LABEL: preview_id,
                    },
                )
            except asyncio.CancelledError:
                logger.warning(f"Creation of preview for project {project_id} cancelled")
                await self._rollback(port, staging_dir, image_ref, handle)
                raise
            except Exception as e:
                logger.error(f"Failed to create preview for project {project_id}: {e}")
                await self._rollback(port, staging_dir, image_ref, handle)
                if isinstance(e, LivePreviewError):
                    if e.project_id is None:
                        e.project_id = project_id
                    raise
                raise RuntimeStartError(
                    f"Failed to create preview: {e}", operation="create", project_id=project_id
                ) from e

            sandbox = PreviewSandbox(
                id=preview_id,
                project_id=project_id,
                user_id=user_id,
                port=port,
                runtime_handle=handle,
                public_host=self._config.previews.public_host,
                image_ref=image_ref,
                container_name=name,
                runtime_kind=kind.value,
                staging_dir=str(staging_dir),
                auto_cleanup=options.auto_cleanup,
                idle_timeout_minutes=options.timeout_minutes,
                max_log_lines=self._config.previews.max_log_lines,
            )
            self._registry.add(sandbox)
            await self._monitor.start(sandbox)

        log_display(
            logger,
            logging.INFO,
            f"Preview for project {project_id} starting on {sandbox.url} ({kind.value})",
        )
        return sandbox

    async def _rollback(
        self, port: int, staging_dir: Path, image_ref: str | None, handle: str | None
    ) -> None:
        """Undo a partially created preview. Errors are logged, not raised."""
        try:
            if handle:
                await self._safe(self._runtime.stop(handle), f"stop container {handle[:12]}")
                await self._safe(self._runtime.remove(handle), f"remove container {handle[:12]}")
            if image_ref:
                await self._safe(self._runtime.remove_image(image_ref), f"remove image {image_ref}")
            self._remove_dir(staging_dir)
        finally:
            self._allocator.release(port)

    @staticmethod
    async def _safe(awaitable, action: str) -> bool:
        try:
            await awaitable
            return True
        except LivePreviewError as e:
            logger.warning(f"Failed to {action}: {e}")
            return False

    @staticmethod
    def _remove_dir(path: Path | str | None) -> None:
        if not path:
            return
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove staging directory {path}: {e}")

    async def update_preview(self, project_id: str, files: Any) -> PreviewSandbox:
        """
        Sync new file contents into the preview's staging directory.

        No rebuild happens. A preview in ``error`` whose container is still
        alive goes back to ``starting`` with a fresh health monitor.

        Raises:
            NotFoundError: If the project has no preview
            SnapshotError: If the files cannot be written
        """
        project_files = normalize_files(files)

        async with self._registry.locked(project_id):
            sandbox = self._registry.get(project_id)
            if sandbox is None:
                raise NotFoundError("Preview not found", project_id=project_id)

            await self._materialize(Path(sandbox.staging_dir), project_files)
            sandbox.touch()

            if sandbox.status == PreviewStatus.ERROR:
                try:
                    alive = await self._runtime.is_running(sandbox.runtime_handle)
                except LivePreviewError as e:
                    logger.warning(f"Could not check container for project {project_id}: {e}")
                    alive = False
                if alive:
                    sandbox.transition(PreviewStatus.STARTING, recovery=True)
                    sandbox.diagnostics = {}
                    await self._monitor.start(sandbox)
                    logger.info(f"Preview for project {project_id} restarted monitoring after update")

        logger.info(f"Updated preview files for project {project_id} ({len(project_files)} file(s))")
        return sandbox

    async def stop_preview(
        self, project_id: str, condition: Callable[[PreviewSandbox], bool] | None = None
    ) -> bool:
        """
        Tear a preview down and forget it.

        Args:
            project_id: Project whose preview to stop
            condition: Checked under the project lock; when it returns False
                the preview is left alone

        Returns:
            True if the preview was stopped, False if ``condition`` declined

        Raises:
            NotFoundError: If the project has no preview
        """
        async with self._registry.locked(project_id):
            sandbox = self._registry.get(project_id)
            if sandbox is None:
                raise NotFoundError("Preview not found", project_id=project_id)
            if condition is not None and not condition(sandbox):
                return False

            await self._monitor.cancel(project_id)
            await self._teardown(sandbox)
            sandbox.transition(PreviewStatus.STOPPED)
            self._registry.remove(project_id)

        log_display(logger, logging.INFO, f"Preview for project {project_id} stopped")
        return True

    async def _teardown(self, sandbox: PreviewSandbox) -> None:
        try:
            handle = sandbox.runtime_handle
            await self._safe(self._runtime.stop(handle), f"stop container {handle[:12]}")
            await self._safe(self._runtime.remove(handle), f"remove container {handle[:12]}")
            if sandbox.image_ref:
                await self._safe(
                    self._runtime.remove_image(sandbox.image_ref), f"remove image {sandbox.image_ref}"
                )
            self._remove_dir(sandbox.staging_dir)
        finally:
            self._allocator.release(sandbox.port)

    async def stop_all(self) -> int:
        """Stop every registered preview. Returns how many were stopped."""
        stopped = 0
        for sandbox in self._registry.all():
            try:
                if await self.stop_preview(sandbox.project_id):
                    stopped += 1
            except NotFoundError:
                continue
            except LivePreviewError as e:
                logger.error(f"Failed to stop preview for project {sandbox.project_id}: {e}")
        return stopped
