"""Project discovery and tracing configuration."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "circletrace.yaml"
PROJECT_MARKERS = (DEFAULT_CONFIG_NAME, "pyproject.toml", ".git")
DEFAULT_BASE_URL = "https://www.comet.com/opik/api"
DEFAULT_PROJECT_NAME = "impact-circle"

ENVIRONMENTS = ("development", "production", "test")

_TRUTHY = ("true", "1", "yes", "on")


class TracingSettings(BaseModel):
    """Connection settings for the trace/dataset/feedback sink."""

    api_key: Optional[str] = None
    workspace: Optional[str] = None
    project_name: str = DEFAULT_PROJECT_NAME
    base_url: str = DEFAULT_BASE_URL
    enabled: bool = True
    environment: str = "development"
    db_path: Optional[str] = None
    queue_size: int = Field(default=1000, ge=1)
    request_timeout: float = Field(default=10.0, gt=0)

    @property
    def is_configured(self) -> bool:
        """True when both the API key and the workspace are present."""
        return bool(self.api_key and self.api_key.strip() and self.workspace and self.workspace.strip())

    @property
    def environment_tag(self) -> str:
        env = (self.environment or "").lower()
        return env if env in ENVIRONMENTS else "development"

    def masked_key(self) -> str:
        if not self.api_key:
            return ""
        return f"{self.api_key[:8]}..."

    @classmethod
    def from_env(cls, overrides: Optional[Dict[str, Any]] = None) -> "TracingSettings":
        """Build settings from environment variables, layered over ``overrides``."""
        load_dotenv()
        values: Dict[str, Any] = dict(overrides or {})

        env_map = {
            "api_key": "OPIK_API_KEY",
            "workspace": "OPIK_WORKSPACE_NAME",
            "project_name": "OPIK_PROJECT_NAME",
            "base_url": "OPIK_URL_OVERRIDE",
            "db_path": "CIRCLETRACE_DB_PATH",
        }
        for field_name, env_name in env_map.items():
            value = os.getenv(env_name)
            if value:
                values[field_name] = value

        enabled = os.getenv("CIRCLETRACE_ENABLED")
        if enabled is not None and enabled.strip():
            values["enabled"] = enabled.strip().lower() in _TRUTHY

        environment = os.getenv("CIRCLETRACE_ENV") or os.getenv("ENVIRONMENT")
        if environment:
            values["environment"] = environment

        return cls(**values)


def find_project_root(start_dir: Optional[Path] = None) -> Path:
    """Find project root by scanning upward for known project markers."""
    current = (start_dir or Path.cwd()).resolve()

    for candidate in (current, *current.parents):
        if any((candidate / marker).exists() for marker in PROJECT_MARKERS):
            return candidate

    return current


def resolve_config_path(config_path: Optional[str] = None, start_dir: Optional[Path] = None) -> Optional[Path]:
    """Resolve a config path from explicit input or project root discovery.

    An explicitly named file must exist; the discovered default may be absent,
    in which case ``None`` is returned.
    """
    if config_path:
        provided = Path(config_path).expanduser()
        if not provided.is_absolute():
            provided = (start_dir or Path.cwd()) / provided
        provided = provided.resolve()
        if not provided.exists():
            raise ConfigurationError(f"Config file not found: {provided}")
        return provided

    config_file = find_project_root(start_dir) / DEFAULT_CONFIG_NAME
    return config_file if config_file.exists() else None


def load_config(path: Optional[Path]) -> Dict[str, Any]:
    """Load the YAML configuration file, returning an empty dict when absent."""
    if path is None:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Error parsing configuration file {path}: {e}") from e


def load_settings(config_path: Optional[str] = None, start_dir: Optional[Path] = None) -> TracingSettings:
    """Resolve tracing settings: YAML ``tracing:`` section, then environment variables.

    Missing credentials are not an error; the caller gets settings whose
    ``is_configured`` is False and the tracing layer degrades to no-ops.
    """
    path = resolve_config_path(config_path, start_dir)
    config = load_config(path)
    section = config.get("tracing", {}) or {}
    settings = TracingSettings.from_env(overrides=section)

    if not settings.is_configured:
        logger.warning("Tracing sink not configured - missing API key or workspace")
    return settings
