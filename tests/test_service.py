# tests/test_service.py
"""
Tests for the LivePreviewService facade.
"""

import asyncio
from pathlib import Path

import pytest

from conftest import REACT_FILES, settle
from livepreview.exceptions import AllocationError, LivePreviewError, NotFoundError
from livepreview.models import PreviewOptions, PreviewStatus


class TestPreviewOperations:
    @pytest.mark.asyncio
    async def test_react_preview_becomes_running(self, service, prober):
        """A React project starts, answers its probe and reports its URL."""
        prober.default = True

        sandbox = await service.create_preview("todo", user_id="u1")

        assert sandbox.status == PreviewStatus.STARTING
        assert sandbox.runtime_kind == "react"
        await settle(service.monitor, "todo")
        assert sandbox.status == PreviewStatus.RUNNING
        assert sandbox.url == f"http://localhost:{sandbox.port}"

    @pytest.mark.asyncio
    async def test_unknown_project(self, service):
        with pytest.raises(NotFoundError):
            await service.create_preview("missing")

    @pytest.mark.asyncio
    async def test_existing_preview_is_reused(self, service, fake_runtime):
        first = await service.create_preview("todo")

        assert await service.create_preview("todo") is first
        assert len(fake_runtime.runs) == 1

    @pytest.mark.asyncio
    async def test_exhausted_range_leaves_registry_unchanged(self, service, project_source):
        for port in range(service.config.ports.start, service.config.ports.end + 1):
            await service.allocator.reserve(port)

        with pytest.raises(AllocationError):
            await service.create_preview("todo")

        assert service.list_previews() == []

    @pytest.mark.asyncio
    async def test_options_pass_through(self, service):
        sandbox = await service.create_preview(
            "todo", options=PreviewOptions(auto_cleanup=False, timeout_minutes=10)
        )

        assert sandbox.auto_cleanup is False
        assert sandbox.idle_timeout_minutes == 10

    @pytest.mark.asyncio
    async def test_get_preview_touches(self, service):
        sandbox = await service.create_preview("todo")
        before = sandbox.last_accessed_at

        assert await service.get_preview("todo") is sandbox
        assert sandbox.last_accessed_at >= before

    @pytest.mark.asyncio
    async def test_get_preview_missing(self, service):
        with pytest.raises(NotFoundError):
            await service.get_preview("todo")

    @pytest.mark.asyncio
    async def test_get_preview_detects_dead_container(self, service, prober, fake_runtime):
        prober.default = True
        sandbox = await service.create_preview("todo")
        await settle(service.monitor, "todo")
        fake_runtime.log_text[sandbox.runtime_handle] = "TypeError: cannot read 'map' of undefined"
        fake_runtime.kill(sandbox.runtime_handle)

        result = await service.get_preview("todo")

        assert result.status == PreviewStatus.ERROR
        assert result.failure_reasons == ["Container stopped unexpectedly"]
        assert [e.message for e in result.errors] == ["Runtime type error"]
        assert result.diagnostics["reason"] == "Container stopped unexpectedly"
        assert result.diagnostics["runtime_handle"] == sandbox.runtime_handle
        assert result.diagnostics["errors"][0]["message"] == "Runtime type error"

    @pytest.mark.asyncio
    async def test_update_preview_syncs_from_source(self, service, project_source, fake_runtime):
        sandbox = await service.create_preview("todo")
        project_source.put("todo", {**REACT_FILES, "src/App.js": "v2"}, runtime_kind="react")

        await service.update_preview("todo")

        assert (Path(sandbox.staging_dir) / "src" / "App.js").read_text() == "v2"
        assert len(fake_runtime.builds) == 1

    @pytest.mark.asyncio
    async def test_update_missing_preview(self, service):
        with pytest.raises(NotFoundError):
            await service.update_preview("todo")

    @pytest.mark.asyncio
    async def test_stop_is_idempotent_by_not_found(self, service):
        await service.create_preview("todo")

        await service.stop_preview("todo")

        with pytest.raises(NotFoundError):
            await service.stop_preview("todo")
        assert service.list_previews() == []


class TestContainerOperations:
    @pytest.mark.asyncio
    async def test_logs_and_exec(self, service, fake_runtime):
        sandbox = await service.create_preview("todo")
        fake_runtime.log_text[sandbox.runtime_handle] = "a\nb\nc"

        assert await service.get_container_logs(sandbox.runtime_handle, tail=2) == "b\nc"
        assert await service.execute_in_container(sandbox.runtime_handle, "ls") == "ran: ls\n"
        assert fake_runtime.exec_calls == [(sandbox.runtime_handle, "ls")]

    @pytest.mark.asyncio
    async def test_empty_command_rejected(self, service):
        sandbox = await service.create_preview("todo")

        with pytest.raises(LivePreviewError):
            await service.execute_in_container(sandbox.runtime_handle, "   ")

    @pytest.mark.asyncio
    async def test_unknown_container(self, service):
        with pytest.raises(NotFoundError):
            await service.get_container_logs("f" * 64)

    @pytest.mark.asyncio
    async def test_container_info(self, service):
        sandbox = await service.create_preview("todo")

        info = await service.get_container_info(sandbox.runtime_handle)

        assert info["running"] is True
        assert info["info"]["Id"] == sandbox.runtime_handle
        assert info["preview"]["project_id"] == "todo"


class TestErrorOperations:
    @pytest.mark.asyncio
    async def test_detect_errors_persists_on_owner(self, service, fake_runtime):
        sandbox = await service.create_preview("todo")
        await settle(service.monitor, "todo")
        fake_runtime.log_text[sandbox.runtime_handle] = "Error: Cannot find module 'foo'"

        analysis = await service.detect_errors(sandbox.runtime_handle)

        assert analysis.total_errors == 1
        assert analysis.summary == "1 error(s) detected – 1 auto-fixable"
        assert [e.message for e in sandbox.errors] == ["Missing dependency"]

    @pytest.mark.asyncio
    async def test_error_analysis_uses_stored_errors(self, service, fake_runtime):
        sandbox = await service.create_preview("todo")
        await settle(service.monitor, "todo")
        fake_runtime.log_text[sandbox.runtime_handle] = "EADDRINUSE"
        await service.detect_errors(sandbox.runtime_handle)
        fake_runtime.log_text[sandbox.runtime_handle] = ""

        analysis = await service.get_error_analysis(sandbox.runtime_handle)

        assert [e.message for e in analysis.errors] == ["Port already in use"]

    @pytest.mark.asyncio
    async def test_update_container_errors_fails_on_critical(self, service, prober, fake_runtime):
        prober.default = True
        sandbox = await service.create_preview("todo")
        await settle(service.monitor, "todo")
        fake_runtime.log_text[sandbox.runtime_handle] = "Failed to compile.\nERROR in ./src/App.js:"

        analysis = await service.update_container_errors("todo")

        assert analysis.has_critical
        assert sandbox.status == PreviewStatus.ERROR
        assert sandbox.failure_reasons == ["React app compilation failed"]
        assert sandbox.diagnostics["summary"] == "2 error(s) detected – 2 auto-fixable"

    @pytest.mark.asyncio
    async def test_update_container_errors_non_critical(self, service, prober, fake_runtime):
        prober.default = True
        sandbox = await service.create_preview("todo")
        await settle(service.monitor, "todo")
        fake_runtime.log_text[sandbox.runtime_handle] = "EADDRINUSE"

        await service.update_container_errors("todo")

        assert sandbox.status == PreviewStatus.RUNNING
        assert len(sandbox.errors) == 1


class TestStartupAndShutdown:
    @pytest.mark.asyncio
    async def test_start_runs_orphan_sweep(self, service, fake_runtime):
        service.config.cleanup.startup_sweep = True
        orphan = fake_runtime.add_container("livepreview-stale")

        await service.start()

        assert orphan not in fake_runtime.containers
        assert service.scheduler.is_running
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_stops_previews(self, service, fake_runtime, prober):
        await service.start()
        sandbox = await service.create_preview("todo")

        await service.shutdown()

        assert sandbox.status == PreviewStatus.STOPPED
        assert service.list_previews() == []
        assert not service.scheduler.is_running
        assert fake_runtime.closed is True
        assert prober.closed is True

    @pytest.mark.asyncio
    async def test_shutdown_can_leave_previews(self, service):
        service.config.previews.stop_on_shutdown = False
        sandbox = await service.create_preview("todo")

        await service.shutdown()
        await asyncio.sleep(0)

        assert sandbox.status != PreviewStatus.STOPPED
        assert service.registry.get("todo") is sandbox
