# src/livepreview/config.py
"""
Configuration management for the live preview system.

Configuration Hierarchy:
    1. Default values (defined in this module)
    2. TOML config file (``$LIVEPREVIEW_CONFIG`` or ~/.config/livepreview/config.toml)
    3. Environment variables (LIVEPREVIEW_<SECTION>_<KEY>)
    4. Runtime overrides (passed to functions)

Example TOML configuration:
    [livepreview.ports]
    start = 4000
    end = 5000

    [livepreview.docker]
    host = "unix:///var/run/docker.sock"
    name_prefix = "livepreview"
    build_timeout = 120

    [livepreview.health]
    initial_delay = 15
    interval = 3
    max_attempts = 60

    [livepreview.cleanup]
    interval_seconds = 600
    idle_minutes = 30

    [livepreview.detection.overrides.eaddrinuse]
    severity = "high"
"""

import copy
import logging
import os
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "LIVEPREVIEW_"
CONFIG_PATH_ENV = "LIVEPREVIEW_CONFIG"

DEFAULT_CONFIG: dict[str, Any] = {
    "ports": {
        "start": 4000,
        "end": 5000,
        "bind_host": "0.0.0.0",
    },
    "docker": {
        "host": None,
        "name_prefix": "livepreview",
        "managed_label": "livepreview.managed",
        "build_timeout": 120.0,
        "run_timeout": 30.0,
        "stop_timeout": 10.0,
        "remove_timeout": 10.0,
        "exec_timeout": 30.0,
        "logs_timeout": 10.0,
        "logs_tail": 500,
    },
    "health": {
        "initial_delay": 15.0,
        "interval": 3.0,
        "max_attempts": 60,
        "probe_timeout": 5.0,
        "scan_every": 10,
        "probe_paths": ["", "/", "/index.html", "/static/js/"],
    },
    "cleanup": {
        "interval_seconds": 600.0,
        "idle_minutes": 30.0,
        "startup_sweep": True,
    },
    "previews": {
        "base_dir": "~/.cache/livepreview/previews",
        "public_host": "localhost",
        "max_log_lines": 1000,
        "stop_on_shutdown": True,
    },
    "detection": {
        "overrides": {},
        "extra_patterns": [],
    },
    "logging": {
        "console_enabled": True,
        "console_level": "INFO",
        "display_min_level": "INFO",
        "file_enabled": False,
        "file_path": "~/.cache/livepreview/logs/livepreview.log",
        "file_level": "DEBUG",
        "rotation_max_bytes": 10 * 1024 * 1024,
        "rotation_backup_count": 5,
        "components": {
            "docker": "WARNING",
            "urllib3": "WARNING",
            "aiohttp": "WARNING",
            "asyncio": "WARNING",
        },
    },
}


@dataclass
class PortsConfig:
    """Managed host port range (closed interval)."""

    start: int = 4000
    end: int = 5000
    bind_host: str = "0.0.0.0"


@dataclass
class DockerConfig:
    """Container engine connection and per-call timeouts (seconds)."""

    host: str | None = None
    name_prefix: str = "livepreview"
    managed_label: str = "livepreview.managed"
    build_timeout: float = 120.0
    run_timeout: float = 30.0
    stop_timeout: float = 10.0
    remove_timeout: float = 10.0
    exec_timeout: float = 30.0
    logs_timeout: float = 10.0
    logs_tail: int = 500


@dataclass
class HealthConfig:
    """Health monitor cadence."""

    initial_delay: float = 15.0
    interval: float = 3.0
    max_attempts: int = 60
    probe_timeout: float = 5.0
    scan_every: int = 10
    probe_paths: list[str] = field(default_factory=lambda: ["", "/", "/index.html", "/static/js/"])


@dataclass
class CleanupConfig:
    """Idle sweep settings."""

    interval_seconds: float = 600.0
    idle_minutes: float = 30.0
    startup_sweep: bool = True


@dataclass
class PreviewsConfig:
    """Staging area and per-preview bookkeeping."""

    base_dir: str = "~/.cache/livepreview/previews"
    public_host: str = "localhost"
    max_log_lines: int = 1000
    stop_on_shutdown: bool = True

    @property
    def base_path(self) -> Path:
        return Path(self.base_dir).expanduser()


@dataclass
class DetectionConfig:
    """
    Error pattern adjustments.

    ``overrides`` maps a pattern name to replacement fields (usually
    ``severity`` and ``auto_fixable``). ``extra_patterns`` is a list of
    pattern tables appended after the built-in ones.
    """

    overrides: dict[str, dict[str, Any]] = field(default_factory=dict)
    extra_patterns: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class LoggingConfig:
    """Logging handler settings consumed by ``configure_logging``."""

    console_enabled: bool = True
    console_level: str = "INFO"
    display_min_level: str = "INFO"
    file_enabled: bool = False
    file_path: str = "~/.cache/livepreview/logs/livepreview.log"
    file_level: str = "DEBUG"
    rotation_max_bytes: int = 10 * 1024 * 1024
    rotation_backup_count: int = 5
    components: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_CONFIG["logging"]["components"])
    )


@dataclass
class LivePreviewConfig:
    """Complete live preview configuration."""

    ports: PortsConfig = field(default_factory=PortsConfig)
    docker: DockerConfig = field(default_factory=DockerConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)
    previews: PreviewsConfig = field(default_factory=PreviewsConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self):
        if self.ports.start < 1 or self.ports.end > 65535:
            raise ConfigError(
                "Port range must lie within 1-65535",
                details={"start": self.ports.start, "end": self.ports.end},
            )
        if self.ports.start > self.ports.end:
            raise ConfigError(
                "ports.start must not exceed ports.end",
                details={"start": self.ports.start, "end": self.ports.end},
            )
        if self.health.max_attempts < 1:
            raise ConfigError("health.max_attempts must be at least 1")
        if self.health.scan_every < 1:
            raise ConfigError("health.scan_every must be at least 1")
        if self.health.interval < 0 or self.health.initial_delay < 0:
            raise ConfigError("health delays must not be negative")
        if self.cleanup.idle_minutes <= 0:
            raise ConfigError("cleanup.idle_minutes must be positive")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return asdict(self)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in override take precedence. Nested dictionaries are merged recursively.
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _apply_env_overrides(config: dict[str, Any], environ: dict[str, str] | None = None) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Environment variables follow the pattern:
        LIVEPREVIEW_<SECTION>_<KEY>=value

    Examples:
        LIVEPREVIEW_PORTS_START=5000
        LIVEPREVIEW_DOCKER_BUILD_TIMEOUT=300
        LIVEPREVIEW_HEALTH_PROBE_PATHS=/,/health

    Only keys that already exist in a section are honoured, so typos are
    ignored rather than silently creating new settings.
    """
    environ = os.environ if environ is None else environ

    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX) or key == CONFIG_PATH_ENV:
            continue

        parts = key[len(ENV_PREFIX) :].lower().split("_")
        if len(parts) < 2:
            continue

        section = parts[0]
        nested_key = "_".join(parts[1:])

        if section in config and isinstance(config[section], dict):
            if nested_key in config[section]:
                if isinstance(config[section][nested_key], list):
                    # list settings stay lists even with a single element
                    config[section][nested_key] = [v.strip() for v in value.split(",")]
                else:
                    config[section][nested_key] = _parse_env_value(value)
            else:
                logger.debug(f"Ignoring unknown config override {key}")

    return config


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to bool, int, float, list or string."""
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if "," in value:
        return [v.strip() for v in value.split(",")]

    return value


def default_config_path() -> Path:
    """Return the config file location, honouring ``LIVEPREVIEW_CONFIG``."""
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".config" / "livepreview" / "config.toml"


def load_toml_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load the ``[livepreview]`` table from a TOML file.

    A missing file yields an empty dict. A file that exists but cannot be
    parsed raises ``ConfigError``.
    """
    if config_path is None:
        config_path = default_config_path()

    if not config_path.exists():
        logger.debug(f"Config file not found: {config_path}")
        return {}

    try:
        with open(config_path, "rb") as f:
            full_config = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(
            f"Failed to load config from {config_path}: {e}", details={"path": str(config_path)}
        ) from e

    section = full_config.get("livepreview", {})
    logger.debug(f"Loaded live preview config from {config_path}")
    return section


def _build_section(cls, values: dict[str, Any], name: str):
    known = {f for f in cls.__dataclass_fields__}
    unknown = set(values) - known
    if unknown:
        logger.warning(f"Ignoring unknown keys in [{name}]: {', '.join(sorted(unknown))}")
    try:
        return cls(**{k: v for k, v in values.items() if k in known})
    except TypeError as e:
        raise ConfigError(f"Invalid [{name}] section: {e}") from e


def load_config(
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
    environ: dict[str, str] | None = None,
) -> LivePreviewConfig:
    """
    Load complete live preview configuration.

    Configuration is loaded and merged in order:
        1. Default values
        2. TOML config file
        3. Environment variables
        4. Runtime overrides

    Args:
        config_path: Optional path to TOML config file
        overrides: Optional runtime overrides, shaped like ``DEFAULT_CONFIG``
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        LivePreviewConfig instance

    Raises:
        ConfigError: If the file is unreadable or a value is invalid
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    toml_config = load_toml_config(config_path)
    if toml_config:
        config = _deep_merge(config, toml_config)

    config = _apply_env_overrides(config, environ)

    if overrides:
        config = _deep_merge(config, overrides)

    return LivePreviewConfig(
        ports=_build_section(PortsConfig, config["ports"], "ports"),
        docker=_build_section(DockerConfig, config["docker"], "docker"),
        health=_build_section(HealthConfig, config["health"], "health"),
        cleanup=_build_section(CleanupConfig, config["cleanup"], "cleanup"),
        previews=_build_section(PreviewsConfig, config["previews"], "previews"),
        detection=_build_section(DetectionConfig, config["detection"], "detection"),
        logging=_build_section(LoggingConfig, config["logging"], "logging"),
    )


def generate_sample_config() -> str:
    """Generate a sample TOML configuration file content."""
    return """# Live preview configuration
# Place this in ~/.config/livepreview/config.toml or point LIVEPREVIEW_CONFIG at it

[livepreview.ports]
# Host ports handed out to previews (inclusive)
start = 4000
end = 5000
bind_host = "0.0.0.0"

[livepreview.docker]
# Remote engine, e.g. "tcp://docker-host:2375" (default: environment)
# host = "unix:///var/run/docker.sock"
name_prefix = "livepreview"
managed_label = "livepreview.managed"

# Timeouts in seconds
build_timeout = 120
run_timeout = 30
stop_timeout = 10
remove_timeout = 10
exec_timeout = 30
logs_timeout = 10
logs_tail = 500

[livepreview.health]
initial_delay = 15
interval = 3
max_attempts = 60
probe_timeout = 5
# Pull logs and scan for errors every N probe rounds
scan_every = 10
probe_paths = ["", "/", "/index.html", "/static/js/"]

[livepreview.cleanup]
interval_seconds = 600
idle_minutes = 30
startup_sweep = true

[livepreview.previews]
base_dir = "~/.cache/livepreview/previews"
public_host = "localhost"
max_log_lines = 1000
stop_on_shutdown = true

[livepreview.detection.overrides]
# Adjust a built-in pattern by name
# eaddrinuse = { severity = "high", auto_fixable = false }

[livepreview.logging]
# With console_enabled = false only operator messages reach stderr
console_enabled = true
console_level = "INFO"
display_min_level = "INFO"
file_enabled = false
file_path = "~/.cache/livepreview/logs/livepreview.log"
file_level = "DEBUG"
rotation_max_bytes = 10485760
rotation_backup_count = 5

[livepreview.logging.components]
docker = "WARNING"
urllib3 = "WARNING"
aiohttp = "WARNING"
"""


def write_sample_config(path: Path | None = None) -> Path:
    """Write a sample configuration file and return its path."""
    if path is None:
        path = default_config_path().with_suffix(".toml.sample")

    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        f.write(generate_sample_config())

    logger.info(f"Wrote sample config to {path}")
    return path
