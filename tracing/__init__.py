"""Trace recording, span handles, delivery queue and sinks."""

from .models import SpanRecord, TraceRecord, TraceStatus
from .queue import TraceQueue
from .recorder import NoOpTraceHandle, TraceHandle, TraceRecorder
from .sinks import DuckDBSink, HttpSink, NullSink, Sink, create_sink
from .spans import DANGLING_SPAN_REASON, NoOpSpanHandle, SpanContext, SpanHandle

__all__ = [
    "DANGLING_SPAN_REASON",
    "DuckDBSink",
    "HttpSink",
    "NoOpSpanHandle",
    "NoOpTraceHandle",
    "NullSink",
    "Sink",
    "SpanContext",
    "SpanHandle",
    "SpanRecord",
    "TraceHandle",
    "TraceQueue",
    "TraceRecord",
    "TraceRecorder",
    "TraceStatus",
    "create_sink",
]
