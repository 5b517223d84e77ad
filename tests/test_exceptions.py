# tests/test_exceptions.py
"""
Unit tests for the live preview exception hierarchy.
"""

import pytest

from livepreview.exceptions import (
    AllocationError,
    BuildError,
    ConfigError,
    ContainerRuntimeError,
    HealthTimeoutError,
    InvalidTransitionError,
    LivePreviewError,
    NotFoundError,
    RuntimeStartError,
    SnapshotError,
)


class TestLivePreviewError:
    def test_basic_message(self):
        error = LivePreviewError("Something broke")

        assert str(error) == "Something broke"
        assert error.message == "Something broke"
        assert error.details == {}
        assert error.project_id is None

    def test_str_includes_project_and_details(self):
        error = LivePreviewError("Boom", details={"port": 4000}, project_id="p1")

        assert str(error) == "[Project p1] Boom (port=4000)"

    def test_to_dict(self):
        error = NotFoundError("Preview not found", project_id="p1")

        assert error.to_dict() == {
            "error_type": "NotFoundError",
            "message": "Preview not found",
            "details": {},
            "project_id": "p1",
        }


class TestHierarchy:
    @pytest.mark.parametrize(
        "cls",
        [
            ConfigError,
            AllocationError,
            BuildError,
            ContainerRuntimeError,
            RuntimeStartError,
            HealthTimeoutError,
            NotFoundError,
            InvalidTransitionError,
            SnapshotError,
        ],
    )
    def test_all_derive_from_base(self, cls):
        assert issubclass(cls, LivePreviewError)

    def test_runtime_start_is_runtime_error(self):
        """Callers catching ContainerRuntimeError also see start failures."""
        with pytest.raises(ContainerRuntimeError):
            raise RuntimeStartError("exited immediately", operation="run")


class TestSubclassPayloads:
    def test_allocation_error_port_range(self):
        error = AllocationError("No ports", port_range=(4000, 4004))

        assert error.to_dict()["port_range"] == [4000, 4004]
        assert AllocationError("No ports").to_dict()["port_range"] is None

    def test_build_error_truncates_log(self):
        error = BuildError("Build failed", build_log="x" * 5000)

        data = error.to_dict()
        assert len(data["build_log"]) == 2000
        assert data["timeout_seconds"] is None

    def test_runtime_error_operation(self):
        error = ContainerRuntimeError("Timed out", operation="stop", timeout_seconds=10)

        data = error.to_dict()
        assert data["operation"] == "stop"
        assert data["timeout_seconds"] == 10

    def test_health_timeout_attempts(self):
        error = HealthTimeoutError("Preview failed to start within timeout", attempts=60)

        assert error.to_dict()["attempts"] == 60

    def test_invalid_transition_fields(self):
        error = InvalidTransitionError("nope", current="stopped", target="running")

        data = error.to_dict()
        assert data["current"] == "stopped"
        assert data["target"] == "running"
