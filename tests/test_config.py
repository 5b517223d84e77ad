# tests/test_config.py
"""
Tests for layered configuration loading.
"""

import copy

import pytest

from livepreview.config import (
    DEFAULT_CONFIG,
    LivePreviewConfig,
    PortsConfig,
    _apply_env_overrides,
    _deep_merge,
    _parse_env_value,
    generate_sample_config,
    load_config,
    load_toml_config,
    write_sample_config,
)
from livepreview.exceptions import ConfigError
from livepreview.health import candidate_urls


@pytest.fixture
def missing_path(tmp_path):
    return tmp_path / "does-not-exist.toml"


class TestDefaults:
    def test_defaults_match_documented_values(self, missing_path):
        config = load_config(config_path=missing_path, environ={})

        assert config.ports.start == 4000
        assert config.ports.end == 5000
        assert config.health.initial_delay == 15
        assert config.health.interval == 3
        assert config.health.max_attempts == 60
        assert config.health.scan_every == 10
        assert config.health.probe_paths == ["", "/", "/index.html", "/static/js/"]
        assert config.cleanup.interval_seconds == 600
        assert config.cleanup.idle_minutes == 30
        assert config.docker.name_prefix == "livepreview"

    def test_to_dict_round_trips_sections(self):
        data = LivePreviewConfig().to_dict()

        assert set(data) == {"ports", "docker", "health", "cleanup", "previews", "detection", "logging"}


class TestValidation:
    def test_inverted_port_range(self):
        with pytest.raises(ConfigError, match="must not exceed"):
            LivePreviewConfig(ports=PortsConfig(start=5000, end=4000))

    def test_out_of_bounds_port(self):
        with pytest.raises(ConfigError):
            LivePreviewConfig(ports=PortsConfig(start=0, end=10))

    def test_non_positive_idle_minutes(self, missing_path):
        with pytest.raises(ConfigError):
            load_config(config_path=missing_path, environ={}, overrides={"cleanup": {"idle_minutes": 0}})

    def test_zero_attempts(self, missing_path):
        with pytest.raises(ConfigError):
            load_config(config_path=missing_path, environ={}, overrides={"health": {"max_attempts": 0}})


class TestTomlLoading:
    def test_missing_file_is_empty(self, missing_path):
        assert load_toml_config(missing_path) == {}

    def test_reads_livepreview_table(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(
            "[livepreview.ports]\nstart = 4100\nend = 4200\n\n"
            "[livepreview.detection.overrides.eaddrinuse]\nseverity = \"high\"\n"
        )

        config = load_config(config_path=path, environ={})

        assert config.ports.start == 4100
        assert config.ports.end == 4200
        assert config.detection.overrides == {"eaddrinuse": {"severity": "high"}}

    def test_invalid_toml_raises(self, tmp_path):
        path = tmp_path / "broken.toml"
        path.write_text("[livepreview\nstart = ")

        with pytest.raises(ConfigError, match="Failed to load config"):
            load_toml_config(path)

    def test_unknown_keys_are_ignored(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[livepreview.ports]\nstart = 4100\nbogus = 1\n")

        config = load_config(config_path=path, environ={})

        assert config.ports.start == 4100
        assert not hasattr(config.ports, "bogus")

    def test_sample_config_parses(self, tmp_path):
        path = write_sample_config(tmp_path / "sample.toml")

        config = load_config(config_path=path, environ={})

        assert path.read_text() == generate_sample_config()
        assert config.ports.start == 4000
        assert config.health.max_attempts == 60


class TestEnvironmentOverrides:
    def test_section_and_key(self):
        config = _apply_env_overrides(
            copy.deepcopy(DEFAULT_CONFIG),
            {"LIVEPREVIEW_PORTS_START": "4500", "LIVEPREVIEW_DOCKER_BUILD_TIMEOUT": "300"},
        )

        assert config["ports"]["start"] == 4500
        assert config["docker"]["build_timeout"] == 300

    def test_unknown_key_ignored(self):
        config = _apply_env_overrides({"ports": {"start": 1}}, {"LIVEPREVIEW_PORTS_NOPE": "3"})

        assert config == {"ports": {"start": 1}}

    def test_config_path_variable_skipped(self):
        config = _apply_env_overrides({"config": {}}, {"LIVEPREVIEW_CONFIG": "/tmp/x.toml"})

        assert config == {"config": {}}

    def test_env_beats_file_and_overrides_beat_env(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[livepreview.ports]\nstart = 4100\nend = 4900\n")

        config = load_config(
            config_path=path,
            environ={"LIVEPREVIEW_PORTS_START": "4200", "LIVEPREVIEW_PORTS_END": "4800"},
            overrides={"ports": {"end": 4700}},
        )

        assert config.ports.start == 4200
        assert config.ports.end == 4700

    def test_list_value(self, missing_path):
        config = load_config(
            config_path=missing_path, environ={"LIVEPREVIEW_HEALTH_PROBE_PATHS": "/,/health"}
        )

        assert config.health.probe_paths == ["/", "/health"]

    def test_single_element_list_value(self, missing_path):
        config = load_config(
            config_path=missing_path, environ={"LIVEPREVIEW_HEALTH_PROBE_PATHS": "/health"}
        )

        assert config.health.probe_paths == ["/health"]
        assert candidate_urls("http://localhost:4000", config.health.probe_paths) == [
            "http://localhost:4000/health"
        ]

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("true", True),
            ("off", False),
            ("42", 42),
            ("2.5", 2.5),
            ("a, b", ["a", "b"]),
            ("plain", "plain"),
        ],
    )
    def test_parse_env_value(self, raw, expected):
        assert _parse_env_value(raw) == expected


class TestDeepMerge:
    def test_nested_merge_keeps_siblings(self):
        merged = _deep_merge({"a": {"x": 1, "y": 2}}, {"a": {"y": 3}})

        assert merged == {"a": {"x": 1, "y": 3}}

    def test_base_is_not_mutated(self):
        base = {"a": 1}
        _deep_merge(base, {"a": 2})

        assert base == {"a": 1}
