"""Core shared utilities for circletrace."""

from core.config import (
    DEFAULT_CONFIG_NAME,
    TracingSettings,
    find_project_root,
    load_settings,
    resolve_config_path,
)
from core.errors import (
    CircleTraceError,
    ConfigurationError,
    FunctionUnderTestError,
    MetricEvaluationError,
    NotFoundError,
    OpenSpanError,
    RemoteSinkError,
)
from core.values import TraceValue, lookup, to_trace_value

__all__ = [
    "DEFAULT_CONFIG_NAME",
    "TracingSettings",
    "find_project_root",
    "load_settings",
    "resolve_config_path",
    "CircleTraceError",
    "ConfigurationError",
    "FunctionUnderTestError",
    "MetricEvaluationError",
    "NotFoundError",
    "OpenSpanError",
    "RemoteSinkError",
    "TraceValue",
    "lookup",
    "to_trace_value",
]
