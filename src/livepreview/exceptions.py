# src/livepreview/exceptions.py
"""
Exceptions for the live preview system.

Every failure raised by this package derives from ``LivePreviewError`` so
callers (the HTTP layer in particular) can catch the whole family at once
and still map individual subclasses to precise responses.

Exception Hierarchy:
    LivePreviewError (base)
    ├── ConfigError - Invalid or unreadable configuration
    ├── AllocationError - No free port left in the managed range
    ├── BuildError - Image build failed or timed out
    ├── ContainerRuntimeError - A container engine call failed or timed out
    │   └── RuntimeStartError - Container failed to start or exited immediately
    ├── HealthTimeoutError - Preview never became reachable
    ├── NotFoundError - Operation on an unknown preview or container
    ├── InvalidTransitionError - Illegal preview status change
    └── SnapshotError - Project files could not be materialized
"""

from typing import Any


class LivePreviewError(Exception):
    """
    Base exception for all live preview errors.

    Attributes:
        message: Human-readable error description
        details: Optional dictionary with additional context
        project_id: ID of the affected project (if known)
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        project_id: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.project_id = project_id

    def __str__(self) -> str:
        base_msg = self.message
        if self.project_id:
            base_msg = f"[Project {self.project_id}] {base_msg}"
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            base_msg = f"{base_msg} ({detail_str})"
        return base_msg

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception to dictionary for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "project_id": self.project_id,
        }


class ConfigError(LivePreviewError):
    """Raised when configuration cannot be loaded or fails validation."""

    pass


class AllocationError(LivePreviewError):
    """
    Raised when no port in the managed range is free.

    Attributes:
        port_range: The (start, end) interval that was scanned
    """

    def __init__(self, message: str, port_range: tuple[int, int] | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.port_range = port_range

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["port_range"] = list(self.port_range) if self.port_range else None
        return result


class BuildError(LivePreviewError):
    """
    Raised when building a preview image fails.

    Attributes:
        build_log: Tail of the build output, if any was captured
        timeout_seconds: Set when the failure was a timeout
    """

    def __init__(
        self,
        message: str,
        build_log: str | None = None,
        timeout_seconds: float | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.build_log = build_log
        self.timeout_seconds = timeout_seconds

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "build_log": self.build_log[-2000:] if self.build_log else None,
                "timeout_seconds": self.timeout_seconds,
            }
        )
        return result


class ContainerRuntimeError(LivePreviewError):
    """
    Raised when a call to the container engine fails or times out.

    Attributes:
        operation: Name of the runtime operation (run, stop, logs, ...)
        timeout_seconds: Set when the failure was a timeout
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        timeout_seconds: float | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.timeout_seconds = timeout_seconds

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update({"operation": self.operation, "timeout_seconds": self.timeout_seconds})
        return result


class RuntimeStartError(ContainerRuntimeError):
    """
    Raised when a preview container fails to start.

    Example:
        >>> raise RuntimeStartError(
        ...     "Port already published by another container",
        ...     operation="run",
        ...     details={"port": 4001},
        ... )
    """

    pass


class HealthTimeoutError(LivePreviewError):
    """
    A preview never answered a health probe within the attempt ceiling.

    This is never raised to callers of ``create_preview``; the health
    monitor records it on the sandbox diagnostics instead.

    Attributes:
        attempts: Number of probe rounds performed
        timeout_seconds: Total time budget that elapsed
    """

    def __init__(
        self,
        message: str,
        attempts: int | None = None,
        timeout_seconds: float | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.attempts = attempts
        self.timeout_seconds = timeout_seconds

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update({"attempts": self.attempts, "timeout_seconds": self.timeout_seconds})
        return result


class NotFoundError(LivePreviewError):
    """Raised when an operation targets a preview or container that does not exist."""

    pass


class InvalidTransitionError(LivePreviewError):
    """
    Raised when a preview is asked to move to a status it cannot reach.

    Attributes:
        current: Status the preview is in
        target: Status that was requested
    """

    def __init__(self, message: str, current: str | None = None, target: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.current = current
        self.target = target

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update({"current": self.current, "target": self.target})
        return result


class SnapshotError(LivePreviewError):
    """Raised when project files cannot be written to a staging directory."""

    pass
