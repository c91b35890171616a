"""Tests for configuration loading and trace value normalisation."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import pytest
from pydantic import BaseModel

from core.config import (
    DEFAULT_PROJECT_NAME,
    TracingSettings,
    find_project_root,
    load_settings,
    resolve_config_path,
)
from core.errors import ConfigurationError
from core.values import lookup, to_trace_value

ENV_VARS = (
    "OPIK_API_KEY",
    "OPIK_WORKSPACE_NAME",
    "OPIK_PROJECT_NAME",
    "OPIK_URL_OVERRIDE",
    "CIRCLETRACE_ENABLED",
    "CIRCLETRACE_ENV",
    "CIRCLETRACE_DB_PATH",
    "ENVIRONMENT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # isolate project root discovery
    monkeypatch.chdir(tmp_path)


class TestTracingSettings:
    def test_defaults_are_unconfigured(self):
        settings = TracingSettings.from_env()
        assert settings.project_name == DEFAULT_PROJECT_NAME
        assert settings.enabled is True
        assert settings.is_configured is False
        assert settings.masked_key() == ""

    def test_configured_from_env(self, monkeypatch):
        monkeypatch.setenv("OPIK_API_KEY", "abcdefghijkl")
        monkeypatch.setenv("OPIK_WORKSPACE_NAME", "team")
        settings = TracingSettings.from_env()
        assert settings.is_configured is True
        assert settings.masked_key() == "abcdefgh..."

    def test_whitespace_key_is_not_configured(self):
        settings = TracingSettings(api_key="   ", workspace="team")
        assert settings.is_configured is False

    def test_enabled_flag_parsing(self, monkeypatch):
        monkeypatch.setenv("CIRCLETRACE_ENABLED", "false")
        assert TracingSettings.from_env().enabled is False
        monkeypatch.setenv("CIRCLETRACE_ENABLED", "Yes")
        assert TracingSettings.from_env().enabled is True

    def test_environment_falls_back_and_normalises(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        assert TracingSettings.from_env().environment_tag == "production"
        monkeypatch.setenv("CIRCLETRACE_ENV", "staging")
        assert TracingSettings.from_env().environment_tag == "development"


class TestLoadSettings:
    def test_missing_default_file_is_fine(self, tmp_path):
        settings = load_settings(start_dir=tmp_path)
        assert settings.project_name == DEFAULT_PROJECT_NAME

    def test_named_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Config file not found"):
            load_settings("nope.yaml", start_dir=tmp_path)

    def test_yaml_section_under_env(self, tmp_path, monkeypatch):
        (tmp_path / "circletrace.yaml").write_text(
            "tracing:\n  project_name: from-yaml\n  workspace: yaml-ws\n  queue_size: 5\n"
        )
        monkeypatch.setenv("OPIK_WORKSPACE_NAME", "env-ws")
        settings = load_settings(start_dir=tmp_path)
        assert settings.project_name == "from-yaml"
        assert settings.workspace == "env-ws"
        assert settings.queue_size == 5

    def test_invalid_yaml_raises(self, tmp_path):
        (tmp_path / "circletrace.yaml").write_text("tracing: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_settings(start_dir=tmp_path)

    def test_project_root_discovery(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text("")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_project_root(nested) == tmp_path.resolve()
        assert resolve_config_path(start_dir=nested) is None


class Color(Enum):
    RED = "red"


@dataclass
class Point:
    x: int
    y: int


class Payload(BaseModel):
    name: str
    tags: list


class TestTraceValue:
    def test_primitives_pass_through(self):
        for value in (None, "s", 3, 2.5, True):
            assert to_trace_value(value) == value

    def test_non_finite_float_becomes_string(self):
        assert to_trace_value(float("nan")) == "nan"
        assert to_trace_value(float("inf")) == "inf"

    def test_structured_values(self):
        value = to_trace_value({
            1: (Color.RED, Point(1, 2)),
            "when": datetime(2024, 1, 2, 3, 4, 5),
            "model": Payload(name="n", tags=["a"]),
            "raw": b"bytes",
        })
        assert value == {
            "1": ["red", {"x": 1, "y": 2}],
            "when": "2024-01-02T03:04:05",
            "model": {"name": "n", "tags": ["a"]},
            "raw": "bytes",
        }

    def test_sets_are_sorted(self):
        assert to_trace_value({"b", "a", "c"}) == ["a", "b", "c"]

    def test_exception(self):
        assert to_trace_value(ValueError("bad")) == {"error": "bad", "type": "ValueError"}

    def test_cycle_is_broken(self):
        data = {"name": "loop"}
        data["self"] = data
        assert to_trace_value(data) == {"name": "loop", "self": "<cycle>"}

    def test_unknown_object_uses_repr(self):
        class Thing:
            def __repr__(self):
                return "<thing>"

        assert to_trace_value([Thing()]) == ["<thing>"]

    def test_lookup(self):
        assert lookup({"a": 1}, "a") == 1
        assert lookup(Point(1, 2), "y") == 2
        assert lookup(None, "a", "d") == "d"
        assert lookup({"a": 1}, "missing", 0) == 0
