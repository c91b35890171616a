"""Span handles and the span context passed to instrumented functions."""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from core.errors import OpenSpanError
from core.values import to_trace_value, utc_now

from .models import SpanRecord, TraceStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

DANGLING_SPAN_REASON = "Parent trace closed with span still open"


def error_message(error: Any) -> str:
    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__
    return str(error)


class RecordHandle:
    """Shared lifecycle for trace and span handles.

    A handle is closed exactly once through ``end`` or ``fail``; later calls
    are ignored. Closing while child spans are still open raises
    ``OpenSpanError`` and leaves the handle open.
    """

    def __init__(self, record, trace_id: str):
        self.record = record
        self.trace_id = trace_id
        self._started = time.perf_counter()
        self._open_spans: Dict[str, "SpanHandle"] = {}
        self._closed = False

    @property
    def id(self) -> Optional[str]:
        return self.record.id

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def open_spans(self) -> List[str]:
        return [handle.name for handle in self._open_spans.values()]

    def _child_parent_id(self) -> Optional[str]:
        return None

    def span(self, name: str, input: Any = None, type: str = "general",
             metadata: Optional[Dict[str, Any]] = None) -> "SpanHandle":
        if self._closed:
            logger.warning(f"Cannot open span '{name}' on closed '{self.name}'")
            return NoOpSpanHandle(name)

        record = SpanRecord(
            trace_id=self.trace_id,
            parent_span_id=self._child_parent_id(),
            name=name,
            type=type,
            input=to_trace_value(input if input is not None else {}),
            metadata=to_trace_value(dict(metadata or {})),
        )
        # Appended on open so siblings keep their opening order
        self.record.spans.append(record)
        handle = SpanHandle(record, parent=self)
        self._open_spans[record.id] = handle
        return handle

    def update(self, metadata: Optional[Dict[str, Any]] = None,
               tags: Optional[List[str]] = None) -> None:
        if self._closed:
            return
        if metadata:
            self.record.metadata.update(to_trace_value(dict(metadata)))
        for tag in tags or []:
            self._add_tag(tag)

    def end(self, output: Any = None, extra_metadata: Optional[Dict[str, Any]] = None) -> bool:
        """Close successfully. Returns False when already closed."""
        if self._closed:
            return False
        self._ensure_no_open_spans()
        self._finish(output, True, dict(extra_metadata or {}))
        return True

    def fail(self, error: Any) -> bool:
        """Close as failed with the error message as output."""
        if self._closed:
            return False
        self._ensure_no_open_spans()
        message = error_message(error)
        self._finish({"error": message}, False, {"error_message": message})
        return True

    def fail_open_spans(self, reason: str = DANGLING_SPAN_REASON) -> List[str]:
        """Fail every still-open descendant span, innermost first."""
        failed: List[str] = []
        for handle in list(self._open_spans.values()):
            failed.extend(handle.fail_open_spans(reason))
            handle.fail(reason)
            failed.append(handle.name)
        return failed

    def _ensure_no_open_spans(self) -> None:
        if self._open_spans:
            raise OpenSpanError(self.name, self.open_spans)

    def _add_tag(self, tag: str) -> None:
        if tag not in self.record.tags:
            self.record.tags.append(tag)

    def _elapsed_ms(self) -> float:
        return round((time.perf_counter() - self._started) * 1000, 2)

    def _finish(self, output: Any, success: bool, metadata: Dict[str, Any]) -> None:
        self.record.output = to_trace_value(output)
        self.record.metadata.update(to_trace_value(metadata))
        self.record.metadata["success"] = success
        self.record.metadata["duration_ms"] = self._elapsed_ms()
        self._add_tag("success" if success else "error")
        self.record.end_time = utc_now()
        self.record.status = TraceStatus.CLOSED
        self._closed = True
        self._on_closed()

    def _on_closed(self) -> None:
        pass

    def _on_child_closed(self, child: "SpanHandle") -> None:
        self._open_spans.pop(child.id, None)


class SpanHandle(RecordHandle):
    """A nested sub-operation. Closes into its parent's ``spans`` list."""

    def __init__(self, record: SpanRecord, parent: RecordHandle):
        super().__init__(record, record.trace_id)
        self._parent = parent

    def _child_parent_id(self) -> Optional[str]:
        return self.record.id

    def _on_closed(self) -> None:
        self._parent._on_child_closed(self)


class NoOpSpanHandle:
    """Span handle used when tracing is inactive. Accepts every call."""

    id = None
    trace_id = None
    closed = False
    open_spans: List[str] = []

    def __init__(self, name: str = ""):
        self.name = name

    def span(self, name: str, input: Any = None, type: str = "general",
             metadata: Optional[Dict[str, Any]] = None) -> "NoOpSpanHandle":
        return NoOpSpanHandle(name)

    def update(self, metadata=None, tags=None) -> None:
        return None

    def end(self, output: Any = None, extra_metadata=None) -> bool:
        return False

    def fail(self, error: Any) -> bool:
        return False

    def fail_open_spans(self, reason: str = DANGLING_SPAN_REASON) -> List[str]:
        return []


class SpanContext:
    """Helper handed to functions traced with ``trace_call_with_spans``."""

    def __init__(self, owner):
        self.owner = owner

    def create_span(self, name: str, input: Any = None):
        return self.owner.span(name, input)

    async def with_span(self, name: str, operation: Callable[[], Awaitable[T]], input: Any = None) -> T:
        """Run ``operation`` inside a span, closing it with the result or the error."""
        span = self.owner.span(name, input)
        try:
            result = await operation()
        except Exception as e:
            _close_span(span, error=e)
            raise
        _close_span(span, output=result)
        return result


def _close_span(span, output: Any = None, error: Optional[BaseException] = None) -> None:
    try:
        dangling = span.fail_open_spans()
        if dangling:
            logger.error(f"Span '{span.name}' closed with open spans: {', '.join(dangling)}")
        if error is not None:
            span.fail(error)
        else:
            span.end(output)
    except Exception as e:
        logger.error(f"Failed to close span '{span.name}': {e}")
