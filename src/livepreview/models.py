# src/livepreview/models.py
"""
Core data models for live previews.

Classes:
    PreviewStatus: Lifecycle status of a preview with its allowed transitions
    ErrorType / Severity: Classification of detected problems
    PreviewError: One problem detected in container logs
    ErrorAnalysis: Read-only summary computed from a list of PreviewError
    ProjectFile / ProjectSnapshot: Files handed to the lifecycle manager
    PreviewOptions: Per-preview creation options
    PreviewSandbox: One running preview, owned by the PreviewRegistry
"""

import hashlib
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .exceptions import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PreviewStatus(str, Enum):
    """
    Current status of a preview.

    STARTING: container exists, health monitor is probing it
    RUNNING:  a health probe succeeded
    ERROR:    container died, or it never became reachable
    STOPPED:  torn down by an explicit stop or the idle sweep
    """

    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


# Transitions the health monitor and lifecycle operations may perform.
_ALLOWED_TRANSITIONS: dict[PreviewStatus, set[PreviewStatus]] = {
    PreviewStatus.STARTING: {PreviewStatus.RUNNING, PreviewStatus.ERROR, PreviewStatus.STOPPED},
    PreviewStatus.RUNNING: {PreviewStatus.ERROR, PreviewStatus.STOPPED},
    PreviewStatus.ERROR: {PreviewStatus.STOPPED},
    PreviewStatus.STOPPED: set(),
}

# Only reachable through update_preview.
_RECOVERY_TRANSITIONS: dict[PreviewStatus, set[PreviewStatus]] = {
    PreviewStatus.ERROR: {PreviewStatus.STARTING},
    PreviewStatus.STOPPED: {PreviewStatus.STARTING},
}


class ErrorType(str, Enum):
    COMPILATION = "compilation"
    RUNTIME = "runtime"
    DEPENDENCY = "dependency"
    NETWORK = "network"
    CONTAINER = "container"
    IMPORT = "import"


class Severity(str, Enum):
    """Ordered severity: LOW < MEDIUM < HIGH < CRITICAL."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


def make_error_id(
    source_container_id: str | None, error_type: ErrorType, message: str, matched_line: str
) -> str:
    """
    Derive a stable error id.

    Scanning identical logs from the same container always yields the
    same id, which keeps repeated scans comparable.
    """
    raw = "|".join([source_container_id or "", error_type.value, message, matched_line])
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class PreviewError:
    """
    One problem detected in container logs.

    Equality ignores ``detected_at`` so two scans of the same logs compare
    equal member by member.
    """

    id: str
    type: ErrorType
    severity: Severity
    message: str
    details: str
    suggested_fix: str
    auto_fixable: bool
    source_container_id: str | None = None
    matched_log_lines: tuple[str, ...] = ()
    matched_pattern: str = ""
    detected_at: datetime = field(default_factory=utcnow, compare=False)

    @property
    def key(self) -> tuple[ErrorType, str]:
        """Deduplication key within one sandbox."""
        return (self.type, self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "details": self.details,
            "suggested_fix": self.suggested_fix,
            "auto_fixable": self.auto_fixable,
            "detected_at": self.detected_at.isoformat(),
            "source_container_id": self.source_container_id,
            "matched_log_lines": list(self.matched_log_lines),
            "matched_pattern": self.matched_pattern,
        }


@dataclass
class ErrorAnalysis:
    """
    Summary view over a list of detected errors.

    Attributes:
        errors: The analysed errors, in detection order
        summary: "<n> error(s) detected – <k> auto-fixable"
        most_critical_error: Highest severity, earliest detected on ties
        fixable_errors: Errors flagged as auto-fixable
        has_critical: Whether any error is CRITICAL
        type_breakdown: Count of errors per type value
        most_auto_fixable_error: Highest severity among fixable errors
    """

    errors: list[PreviewError]
    summary: str
    most_critical_error: PreviewError | None
    fixable_errors: list[PreviewError]
    has_critical: bool
    type_breakdown: dict[str, int] = field(default_factory=dict)
    most_auto_fixable_error: PreviewError | None = None

    @property
    def total_errors(self) -> int:
        return len(self.errors)

    @property
    def critical_errors(self) -> int:
        return sum(1 for e in self.errors if e.severity == Severity.CRITICAL)

    @property
    def auto_fixable_errors(self) -> int:
        return len(self.fixable_errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "errors": [e.to_dict() for e in self.errors],
            "summary": self.summary,
            "most_critical_error": (
                self.most_critical_error.to_dict() if self.most_critical_error else None
            ),
            "fixable_errors": [e.to_dict() for e in self.fixable_errors],
            "has_critical": self.has_critical,
            "total_errors": self.total_errors,
            "critical_errors": self.critical_errors,
            "auto_fixable_errors": self.auto_fixable_errors,
            "type_breakdown": dict(self.type_breakdown),
            "most_auto_fixable_error": (
                self.most_auto_fixable_error.to_dict() if self.most_auto_fixable_error else None
            ),
        }


@dataclass
class ProjectFile:
    path: str
    content: str


@dataclass
class ProjectSnapshot:
    """Files of one project as returned by a ProjectSource."""

    project_id: str
    files: list[ProjectFile]
    runtime_kind: str = "node"


@dataclass
class PreviewOptions:
    """
    Options accepted by create_preview.

    Attributes:
        auto_cleanup: Whether the idle sweep may stop this preview
        timeout_minutes: Idle threshold override (None uses the configured default)
    """

    auto_cleanup: bool = True
    timeout_minutes: float | None = None

    def __post_init__(self):
        if self.timeout_minutes is not None and self.timeout_minutes <= 0:
            raise ValueError("timeout_minutes must be positive")


@dataclass
class PreviewSandbox:
    """
    One running preview.

    Instances are owned by the PreviewRegistry; every mutation happens
    while holding that project's registry lock.
    """

    project_id: str
    port: int
    runtime_handle: str
    user_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: PreviewStatus = PreviewStatus.STARTING
    public_host: str = "localhost"
    image_ref: str | None = None
    container_name: str | None = None
    runtime_kind: str = "node"
    staging_dir: str | None = None
    auto_cleanup: bool = True
    idle_timeout_minutes: float | None = None
    created_at: datetime = field(default_factory=utcnow)
    last_accessed_at: datetime = field(default_factory=utcnow)
    max_log_lines: int = 1000
    logs: deque = field(default=None)
    errors: list[PreviewError] = field(default_factory=list)
    last_error_scan_at: datetime | None = None
    failure_reasons: list[str] = field(default_factory=list)
    diagnostics: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.logs is None:
            self.logs = deque(maxlen=self.max_log_lines)
        elif not isinstance(self.logs, deque) or self.logs.maxlen != self.max_log_lines:
            self.logs = deque(self.logs, maxlen=self.max_log_lines)

    @property
    def url(self) -> str:
        return f"http://{self.public_host}:{self.port}"

    @property
    def is_active(self) -> bool:
        return self.status != PreviewStatus.STOPPED

    def touch(self, now: datetime | None = None) -> None:
        self.last_accessed_at = now or utcnow()

    def transition(self, target: PreviewStatus, recovery: bool = False) -> None:
        """
        Move to ``target``.

        ``recovery`` unlocks ERROR/STOPPED -> STARTING and must only be
        used by update_preview. Staying in the same status is a no-op.

        Raises:
            InvalidTransitionError: If the move is not permitted
        """
        if target == self.status:
            return
        allowed = set(_ALLOWED_TRANSITIONS[self.status])
        if recovery:
            allowed |= _RECOVERY_TRANSITIONS.get(self.status, set())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot move preview from {self.status.value} to {target.value}",
                current=self.status.value,
                target=target.value,
                project_id=self.project_id,
            )
        self.status = target

    def append_logs(self, lines: list[str]) -> None:
        self.logs.extend(lines)

    def replace_errors(self, errors: list[PreviewError], scanned_at: datetime | None = None) -> None:
        """Replace the error set wholesale, keeping one error per (type, message)."""
        seen: set[tuple[ErrorType, str]] = set()
        unique = []
        for error in errors:
            if error.key in seen:
                continue
            seen.add(error.key)
            unique.append(error)
        self.errors = unique
        self.last_error_scan_at = scanned_at or utcnow()

    def record_failure(self, reason: str) -> None:
        self.failure_reasons.append(reason)

    def to_dict(self, include_logs: bool = True) -> dict[str, Any]:
        result = {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "port": self.port,
            "status": self.status.value,
            "url": self.url,
            "runtime_handle": self.runtime_handle,
            "image_ref": self.image_ref,
            "container_name": self.container_name,
            "runtime_kind": self.runtime_kind,
            "auto_cleanup": self.auto_cleanup,
            "idle_timeout_minutes": self.idle_timeout_minutes,
            "created_at": self.created_at.isoformat(),
            "last_accessed_at": self.last_accessed_at.isoformat(),
            "errors": [e.to_dict() for e in self.errors],
            "last_error_scan_at": (
                self.last_error_scan_at.isoformat() if self.last_error_scan_at else None
            ),
            "failure_reasons": list(self.failure_reasons),
            "diagnostics": dict(self.diagnostics),
        }
        if include_logs:
            result["logs"] = list(self.logs)
        return result
