# src/livepreview/__init__.py
"""
livepreview: ephemeral preview containers for generated projects.

Stands up one Docker container per project on a dedicated host port,
watches it until it answers HTTP, turns its logs into structured errors
and tears it down when it goes idle.

Main entry points:
    LivePreviewService - orchestration facade
    load_config - layered configuration loading
    create_app (livepreview.api) - FastAPI application
"""

from .config import LivePreviewConfig, load_config
from .descriptors import RuntimeKind, render_compose, render_dockerfile
from .detection import DEFAULT_BUILD_PATTERNS, DEFAULT_RUNTIME_PATTERNS, ErrorDetector, ErrorPattern
from .exceptions import (
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
from .models import (
    ErrorAnalysis,
    ErrorType,
    PreviewError,
    PreviewOptions,
    PreviewSandbox,
    PreviewStatus,
    ProjectFile,
    ProjectSnapshot,
    Severity,
)
from .service import LivePreviewService
from .snapshots import InMemoryProjectSource, ProjectSource

__version__ = "0.1.0"

__all__ = [
    "AllocationError",
    "BuildError",
    "ConfigError",
    "ContainerRuntimeError",
    "DEFAULT_BUILD_PATTERNS",
    "DEFAULT_RUNTIME_PATTERNS",
    "ErrorAnalysis",
    "ErrorDetector",
    "ErrorPattern",
    "ErrorType",
    "HealthTimeoutError",
    "InMemoryProjectSource",
    "InvalidTransitionError",
    "LivePreviewConfig",
    "LivePreviewError",
    "LivePreviewService",
    "NotFoundError",
    "PreviewError",
    "PreviewOptions",
    "PreviewSandbox",
    "PreviewStatus",
    "ProjectFile",
    "ProjectSnapshot",
    "ProjectSource",
    "RuntimeKind",
    "RuntimeStartError",
    "Severity",
    "SnapshotError",
    "load_config",
    "render_compose",
    "render_dockerfile",
]
