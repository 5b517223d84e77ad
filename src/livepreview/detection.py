# src/livepreview/detection.py
"""
Log-based error detection.

Patterns are plain data (``ErrorPattern`` records) grouped in two ordered
tables: build/compilation problems and runtime problems. ``ErrorDetector``
applies them line by line and produces a deduplicated list of
``PreviewError``. Scanning is pure; the detector never touches a sandbox.

Severity and auto-fixable flags are heuristics. They can be adjusted per
pattern name through ``DetectionConfig.overrides`` without code changes.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from .config import DetectionConfig
from .exceptions import ConfigError
from .models import ErrorAnalysis, ErrorType, PreviewError, Severity, make_error_id, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ErrorPattern:
    """
    One log signature.

    Attributes:
        name: Stable identifier used by config overrides
        regex: Pattern searched in each log line
        type: Error classification
        severity: How bad a match is
        message: Short title, also half of the dedup key
        details: Longer explanation
        suggested_fix: Hint for a human or the auto-fix consumer
        auto_fixable: Whether the auto-fix consumer should attempt a fix
        stage: "build" or "runtime"
    """

    name: str
    regex: str
    type: ErrorType
    severity: Severity
    message: str
    details: str
    suggested_fix: str
    auto_fixable: bool
    stage: str = "build"
    _compiled: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        try:
            compiled = re.compile(self.regex)
        except re.error as e:
            raise ConfigError(f"Invalid regex for pattern '{self.name}': {e}") from e
        object.__setattr__(self, "_compiled", compiled)

    def search(self, line: str) -> re.Match | None:
        return self._compiled.search(line)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ErrorPattern":
        try:
            return cls(
                name=data["name"],
                regex=data["regex"],
                type=ErrorType(data["type"]),
                severity=Severity(data.get("severity", "medium")),
                message=data["message"],
                details=data.get("details", ""),
                suggested_fix=data.get("suggested_fix", ""),
                auto_fixable=bool(data.get("auto_fixable", False)),
                stage=data.get("stage", "runtime"),
            )
        except (KeyError, ValueError) as e:
            raise ConfigError(f"Invalid error pattern definition: {e}", details={"pattern": data}) from e


DEFAULT_BUILD_PATTERNS: tuple[ErrorPattern, ...] = (
    ErrorPattern(
        name="module_not_found",
        regex=r"Module not found: Error: Can't resolve '([^']+)'",
        type=ErrorType.IMPORT,
        severity=Severity.HIGH,
        message="Missing module or import error",
        details="The app cannot find a required file or module",
        suggested_fix="Add missing file or fix import path",
        auto_fixable=True,
    ),
    ErrorPattern(
        name="failed_to_compile",
        regex=r"Failed to compile",
        type=ErrorType.COMPILATION,
        severity=Severity.CRITICAL,
        message="React app compilation failed",
        details="The React development server cannot compile the application",
        suggested_fix="Fix syntax errors or missing dependencies",
        auto_fixable=True,
    ),
    ErrorPattern(
        name="webpack_error",
        regex=r"ERROR in ([^:]+):",
        type=ErrorType.COMPILATION,
        severity=Severity.HIGH,
        message="Webpack compilation error",
        details="There are syntax or import errors in the code",
        suggested_fix="Check for syntax errors and missing imports",
        auto_fixable=True,
    ),
    ErrorPattern(
        name="missing_dependency",
        regex=r"Cannot find module '([^']+)'",
        type=ErrorType.DEPENDENCY,
        severity=Severity.HIGH,
        message="Missing dependency",
        details="A required npm package is not installed",
        suggested_fix="Install missing npm package",
        auto_fixable=True,
    ),
    ErrorPattern(
        name="eaddrinuse",
        regex=r"EADDRINUSE",
        type=ErrorType.NETWORK,
        severity=Severity.MEDIUM,
        message="Port already in use",
        details="The development server port is already occupied",
        suggested_fix="Use a different port or stop conflicting process",
        auto_fixable=True,
    ),
)

DEFAULT_RUNTIME_PATTERNS: tuple[ErrorPattern, ...] = (
    ErrorPattern(
        name="type_error",
        regex=r"TypeError: (.+)",
        type=ErrorType.RUNTIME,
        severity=Severity.HIGH,
        message="Runtime type error",
        details="The app encountered a type error during execution",
        suggested_fix="Check variable types and null handling",
        auto_fixable=False,
        stage="runtime",
    ),
    ErrorPattern(
        name="reference_error",
        regex=r"ReferenceError: (.+)",
        type=ErrorType.RUNTIME,
        severity=Severity.HIGH,
        message="Reference error",
        details="The app is trying to use an undefined variable or function",
        suggested_fix="Check for undefined variables and function declarations",
        auto_fixable=False,
        stage="runtime",
    ),
)


def build_pattern_table(config: DetectionConfig | None = None) -> list[ErrorPattern]:
    """
    Assemble the ordered pattern table.

    Build patterns come first, then runtime patterns, then any extra
    patterns from config. Overrides replace fields of a named pattern.
    """
    patterns = list(DEFAULT_BUILD_PATTERNS) + list(DEFAULT_RUNTIME_PATTERNS)
    if config is None:
        return patterns

    patterns.extend(ErrorPattern.from_dict(p) for p in config.extra_patterns)

    by_name = {p.name: i for i, p in enumerate(patterns)}
    for name, changes in config.overrides.items():
        if name not in by_name:
            raise ConfigError(f"Override for unknown error pattern '{name}'")
        values = dict(changes)
        idx = by_name[name]
        try:
            if "severity" in values:
                values["severity"] = Severity(values["severity"])
            if "type" in values:
                values["type"] = ErrorType(values["type"])
            patterns[idx] = replace(patterns[idx], **values)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid override for pattern '{name}': {e}") from e
        logger.debug(f"Applied override to error pattern '{name}': {values}")

    return patterns


class ErrorDetector:
    """
    Turns raw container logs into structured errors.

    Example:
        >>> detector = ErrorDetector()
        >>> errors = detector.scan("Error: Cannot find module 'foo'")
        >>> errors[0].type, errors[0].severity
        (<ErrorType.DEPENDENCY: 'dependency'>, <Severity.HIGH: 'high'>)
    """

    def __init__(self, patterns: Iterable[ErrorPattern] | None = None):
        self._patterns = list(patterns) if patterns is not None else build_pattern_table()

    @classmethod
    def from_config(cls, config: DetectionConfig) -> "ErrorDetector":
        return cls(build_pattern_table(config))

    @property
    def patterns(self) -> list[ErrorPattern]:
        return list(self._patterns)

    def scan(self, logs: str | Iterable[str], source_container_id: str | None = None) -> list[PreviewError]:
        """
        Scan logs and return one error per (type, message) pair.

        Every line is tested against every pattern in table order. The
        first match of a pair wins; later matches of the same pair are
        dropped. Deduplication is local to this call.

        Args:
            logs: Log text or an iterable of lines
            source_container_id: Recorded on each error and folded into its id

        Returns:
            Errors in detection order
        """
        lines = logs.splitlines() if isinstance(logs, str) else list(logs)
        found: dict[tuple[ErrorType, str], PreviewError] = {}
        detected_at = utcnow()

        for line in lines:
            for pattern in self._patterns:
                key = (pattern.type, pattern.message)
                if key in found:
                    continue
                if not pattern.search(line):
                    continue
                found[key] = PreviewError(
                    id=make_error_id(source_container_id, pattern.type, pattern.message, line),
                    type=pattern.type,
                    severity=pattern.severity,
                    message=pattern.message,
                    details=pattern.details,
                    suggested_fix=pattern.suggested_fix,
                    auto_fixable=pattern.auto_fixable,
                    source_container_id=source_container_id,
                    matched_log_lines=(line,),
                    matched_pattern=pattern.regex,
                    detected_at=detected_at,
                )

        errors = list(found.values())
        if errors:
            logger.debug(f"Detected {len(errors)} error(s) in {len(lines)} log line(s)")
        return errors

    @staticmethod
    def has_critical(errors: Iterable[PreviewError]) -> bool:
        return any(e.severity == Severity.CRITICAL for e in errors)

    @staticmethod
    def type_breakdown(errors: Iterable[PreviewError]) -> dict[str, int]:
        breakdown: dict[str, int] = {}
        for error in errors:
            breakdown[error.type.value] = breakdown.get(error.type.value, 0) + 1
        return breakdown

    @staticmethod
    def _most_severe(errors: list[PreviewError]) -> PreviewError | None:
        best = None
        for error in errors:
            # strict comparison keeps the earliest on ties
            if best is None or error.severity.rank > best.severity.rank:
                best = error
        return best

    def analyze(self, errors: Iterable[PreviewError]) -> ErrorAnalysis:
        """Build the read-only ErrorAnalysis view over ``errors``."""
        errors = list(errors)
        fixable = [e for e in errors if e.auto_fixable]
        return ErrorAnalysis(
            errors=errors,
            summary=f"{len(errors)} error(s) detected – {len(fixable)} auto-fixable",
            most_critical_error=self._most_severe(errors),
            fixable_errors=fixable,
            has_critical=self.has_critical(errors),
            type_breakdown=self.type_breakdown(errors),
            most_auto_fixable_error=self._most_severe(fixable),
        )
