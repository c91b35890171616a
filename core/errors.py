"""Domain errors used by circletrace components."""

from typing import Optional


class CircleTraceError(Exception):
    """Base exception for circletrace errors."""


class ConfigurationError(CircleTraceError):
    """Raised when the sink is not configured for an operation that needs it."""

    exit_code = 2


class NotFoundError(CircleTraceError):
    """Raised when a named dataset does not exist on the sink."""

    exit_code = 1


class RemoteSinkError(CircleTraceError):
    """Raised when delivery to the trace/dataset/feedback sink fails."""

    exit_code = 1

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MetricEvaluationError(CircleTraceError):
    """Raised inside a metric; converted to a neutral score by the metric wrapper."""


class FunctionUnderTestError(CircleTraceError):
    """Wraps an exception raised by a function under evaluation."""

    def __init__(self, original: BaseException):
        super().__init__(str(original) or original.__class__.__name__)
        self.original = original


class OpenSpanError(CircleTraceError):
    """Raised when a trace or span is closed while one of its spans is still open."""

    def __init__(self, name: str, open_spans):
        self.open_spans = list(open_spans)
        super().__init__(
            f"Cannot close '{name}' with open spans: {', '.join(self.open_spans)}"
        )
