# src/livepreview/health.py
"""
Per-preview health monitoring.

Each preview in ``starting`` gets one asyncio task that waits for an
initial grace period, then ticks on a fixed interval up to an attempt
ceiling. A tick:

    1. checks the container is still running; if not the preview goes
       to ``error`` with its final logs captured
    2. sends HEAD requests to a few candidate URLs; the first 2xx/3xx
       moves the preview to ``running`` and ends the task
    3. every ``scan_every`` ticks pulls logs and refreshes the preview's
       detected errors

Reaching the ceiling moves the preview to ``error`` and stores a
diagnostic snapshot on it. Nothing is raised to the creator of the
preview, which returned long before.

All writes happen under the project's registry lock and only while the
sandbox is still the registry's entry for its project, so a cancelled or
superseded task never touches a removed preview.
"""

import asyncio
import logging
from typing import Awaitable, Callable

import aiohttp

from .config import HealthConfig
from .detection import ErrorDetector
from .exceptions import HealthTimeoutError, LivePreviewError
from .logging_config import log_display
from .models import PreviewSandbox, PreviewStatus, utcnow
from .registry import PreviewRegistry
from .runtime.base import ContainerRuntime

logger = logging.getLogger(__name__)

# Lines of log kept in a diagnostic snapshot
DIAGNOSTIC_LOG_LINES = 50


def build_diagnostics(sandbox: PreviewSandbox, attempts: int, reason: str) -> dict:
    """Snapshot of a failed preview, stored on ``sandbox.diagnostics``."""
    return {
        "reason": reason,
        "runtime_handle": sandbox.runtime_handle,
        "port": sandbox.port,
        "project_id": sandbox.project_id,
        "status": sandbox.status.value,
        "attempts": attempts,
        "last_logs": list(sandbox.logs)[-DIAGNOSTIC_LOG_LINES:],
        "errors": [e.to_dict() for e in sandbox.errors],
        "failure_reasons": list(sandbox.failure_reasons),
        "recorded_at": utcnow().isoformat(),
    }


class HttpProber:
    """
    Reachability check using HEAD requests.

    Redirects are not followed: a 3xx already proves the dev server is
    answering.
    """

    def __init__(self, timeout: float = 5.0):
        self._timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def probe(self, url: str) -> bool:
        session = await self._get_session()
        try:
            async with session.head(
                url,
                allow_redirects=False,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                return 200 <= response.status < 400
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.debug(f"Probe {url} failed: {e.__class__.__name__}: {e}")
            return False

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


def candidate_urls(base_url: str, paths: list[str]) -> list[str]:
    base = base_url.rstrip("/")
    urls = []
    for path in paths:
        url = base + path if path else base_url
        if url not in urls:
            urls.append(url)
    return urls


def merge_log_lines(existing: list[str], fresh: list[str]) -> list[str]:
    """
    Return the part of ``fresh`` not already at the end of ``existing``.

    Container logs are fetched as a tail snapshot, so consecutive
    fetches overlap. The longest suffix of ``existing`` that is also a
    prefix of ``fresh`` is skipped.
    """
    limit = min(len(existing), len(fresh))
    for size in range(limit, 0, -1):
        if existing[-size:] == fresh[:size]:
            return fresh[size:]
    return fresh


class HealthMonitor:
    """
    Runs and tracks one monitoring task per preview.

    Args:
        registry: Registry owning the previews
        runtime: Container runtime used for liveness and logs
        detector: Error detector applied to fetched logs
        config: Cadence settings
        prober: Object with ``async probe(url) -> bool``
        sleep: Awaitable sleep, replaceable in tests
        logs_tail: Number of log lines to fetch per scan
    """

    def __init__(
        self,
        registry: PreviewRegistry,
        runtime: ContainerRuntime,
        detector: ErrorDetector | None = None,
        config: HealthConfig | None = None,
        prober=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logs_tail: int | None = None,
    ):
        self._registry = registry
        self._runtime = runtime
        self._detector = detector or ErrorDetector()
        self._config = config or HealthConfig()
        self._prober = prober or HttpProber(timeout=self._config.probe_timeout)
        self._sleep = sleep
        self._logs_tail = logs_tail
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def active_count(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    def is_monitoring(self, project_id: str) -> bool:
        task = self._tasks.get(project_id)
        return task is not None and not task.done()

    def task_for(self, project_id: str) -> asyncio.Task | None:
        return self._tasks.get(project_id)

    async def start(self, sandbox: PreviewSandbox) -> asyncio.Task:
        """Start monitoring ``sandbox``, replacing any task for the same project."""
        await self.cancel(sandbox.project_id)
        task = asyncio.create_task(
            self._run(sandbox), name=f"livepreview-health-{sandbox.project_id}"
        )
        self._tasks[sandbox.project_id] = task
        logger.debug(f"Health monitor started for project {sandbox.project_id}")
        return task

    async def cancel(self, project_id: str) -> None:
        """Cancel the project's task and wait for it to finish."""
        task = self._tasks.pop(project_id, None)
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"Health monitor cancelled for project {project_id}")

    async def cancel_all(self) -> None:
        for project_id in list(self._tasks):
            await self.cancel(project_id)

    async def close(self) -> None:
        await self.cancel_all()
        close = getattr(self._prober, "close", None)
        if close is not None:
            await close()

    async def _run(self, sandbox: PreviewSandbox) -> None:
        cfg = self._config
        attempts = 0
        try:
            await self._sleep(cfg.initial_delay)
            while attempts < cfg.max_attempts:
                attempts += 1
                try:
                    if await self._tick(sandbox, attempts):
                        return
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(
                        f"Health check {attempts} for project {sandbox.project_id} failed: {e}",
                        exc_info=not isinstance(e, LivePreviewError),
                    )
                if attempts < cfg.max_attempts:
                    await self._sleep(cfg.interval)
            await self._on_timeout(sandbox, attempts)
        finally:
            current = asyncio.current_task()
            if self._tasks.get(sandbox.project_id) is current:
                del self._tasks[sandbox.project_id]

    async def _tick(self, sandbox: PreviewSandbox, attempt: int) -> bool:
        """Run one health check. Returns True when monitoring should stop."""
        if not self._registry.is_current(sandbox):
            return True

        if not await self._runtime.is_running(sandbox.runtime_handle):
            await self._on_container_dead(sandbox, attempt)
            return True

        for url in candidate_urls(sandbox.url, self._config.probe_paths):
            if await self._prober.probe(url):
                return await self._on_reachable(sandbox, url, attempt)

        if attempt % self._config.scan_every == 0:
            await self.refresh_errors(sandbox)
        return False

    async def _fetch_logs(self, sandbox: PreviewSandbox) -> str:
        try:
            return await self._runtime.logs(sandbox.runtime_handle, tail=self._logs_tail)
        except LivePreviewError as e:
            logger.warning(f"Could not read logs for project {sandbox.project_id}: {e}")
            return ""

    def _apply_logs(self, sandbox: PreviewSandbox, text: str) -> None:
        fresh = text.splitlines()
        new_lines = merge_log_lines(list(sandbox.logs), fresh)
        sandbox.append_logs(new_lines)
        errors = self._detector.scan(text, source_container_id=sandbox.runtime_handle)
        sandbox.replace_errors(errors, scanned_at=utcnow())

    async def refresh_errors(self, sandbox: PreviewSandbox) -> None:
        """Pull logs, append new lines and replace the detected errors."""
        text = await self._fetch_logs(sandbox)
        async with self._registry.locked(sandbox.project_id):
            if not self._registry.is_current(sandbox):
                return
            self._apply_logs(sandbox, text)
        if sandbox.errors:
            logger.info(
                f"Project {sandbox.project_id}: {len(sandbox.errors)} error(s) detected in logs"
            )

    async def _on_container_dead(self, sandbox: PreviewSandbox, attempt: int) -> None:
        text = await self._fetch_logs(sandbox)
        async with self._registry.locked(sandbox.project_id):
            if not self._registry.is_current(sandbox) or sandbox.status == PreviewStatus.STOPPED:
                return
            self._apply_logs(sandbox, text)
            reason = "Container failed to start"
            sandbox.record_failure(reason)
            sandbox.transition(PreviewStatus.ERROR)
            sandbox.diagnostics = build_diagnostics(sandbox, attempt, reason)
        logger.error(
            f"Container {sandbox.runtime_handle[:12]} for project {sandbox.project_id} "
            f"is not running"
        )

    async def _on_reachable(self, sandbox: PreviewSandbox, url: str, attempt: int) -> bool:
        async with self._registry.locked(sandbox.project_id):
            if not self._registry.is_current(sandbox):
                return True
            if sandbox.status == PreviewStatus.STARTING:
                sandbox.transition(PreviewStatus.RUNNING)
        log_display(
            logger,
            logging.INFO,
            f"Preview for project {sandbox.project_id} ready at {sandbox.url} "
            f"(probe {url} ok after {attempt} attempt(s))",
        )
        return True

    async def _on_timeout(self, sandbox: PreviewSandbox, attempts: int) -> None:
        cfg = self._config
        text = await self._fetch_logs(sandbox)
        budget = cfg.initial_delay + cfg.interval * max(attempts - 1, 0)
        error = HealthTimeoutError(
            "Preview failed to start within timeout",
            attempts=attempts,
            timeout_seconds=budget,
            project_id=sandbox.project_id,
        )
        async with self._registry.locked(sandbox.project_id):
            if not self._registry.is_current(sandbox) or sandbox.status != PreviewStatus.STARTING:
                return
            self._apply_logs(sandbox, text)
            sandbox.record_failure(error.message)
            sandbox.transition(PreviewStatus.ERROR)
            sandbox.diagnostics = build_diagnostics(sandbox, attempts, error.message)
            sandbox.diagnostics["error"] = error.to_dict()
        logger.error(
            f"Preview for project {sandbox.project_id} not reachable after {attempts} "
            f"attempt(s) on port {sandbox.port}"
        )
