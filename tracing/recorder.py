"""Trace recording around asynchronous operations.

``TraceRecorder.trace_call`` is the main integration point: it wraps any
async callable, records input, output, timing and outcome, and returns the
callable's result (or re-raises its exception) unchanged. Instrumentation
failures are logged and never reach the caller.
"""

import functools
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from core.config import TracingSettings
from core.values import to_trace_value

from .models import TraceRecord
from .queue import TraceQueue
from .sinks import Sink, create_sink
from .spans import DANGLING_SPAN_REASON, NoOpSpanHandle, RecordHandle, SpanContext, error_message

logger = logging.getLogger(__name__)

T = TypeVar("T")

_COST_KEYS = ("model", "input_tokens", "output_tokens")


class TraceHandle(RecordHandle):
    """Handle for one open trace."""

    def __init__(self, recorder: "TraceRecorder", record: TraceRecord):
        super().__init__(record, record.id)
        self._recorder = recorder

    def end(self, output: Any = None, extra_metadata: Optional[Dict[str, Any]] = None) -> bool:
        if self._closed:
            return False
        self._ensure_no_open_spans()
        metadata = dict(extra_metadata or {})
        metadata.update(self._recorder._charge_budget(self.record, metadata))
        self._finish(output, True, metadata)
        return True

    def _on_closed(self) -> None:
        self._recorder._on_trace_closed(self.record)


class NoOpTraceHandle(NoOpSpanHandle):
    """Trace handle returned when the sink is inactive."""


class TraceRecorder:
    """Creates traces and hands closed ones to the delivery queue."""

    def __init__(
        self,
        sink: Sink,
        environment: str = "development",
        budgets=None,
        queue: Optional[TraceQueue] = None,
    ):
        self.sink = sink
        self.environment = environment
        self.budgets = budgets
        self.queue = queue or TraceQueue(sink)

    @classmethod
    def from_settings(cls, settings: TracingSettings, budgets=None) -> "TraceRecorder":
        sink = create_sink(settings)
        return cls(
            sink,
            environment=settings.environment_tag,
            budgets=budgets,
            queue=TraceQueue(sink, maxsize=settings.queue_size),
        )

    @property
    def enabled(self) -> bool:
        return self.sink.enabled

    # ── Handles ───────────────────────────────────────────────────────

    def start_trace(
        self,
        name: str,
        input: Any = None,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[Sequence[str]] = None,
    ):
        """Open a trace. Returns a no-op handle when tracing is inactive."""
        if not self.enabled:
            return NoOpTraceHandle(name)

        record = TraceRecord(
            name=name,
            project_name=getattr(self.sink, "project_name", ""),
            input=to_trace_value(input),
            metadata=to_trace_value(dict(metadata or {})),
            tags=list(tags) if tags is not None else [name, "agent", self.environment],
        )
        return TraceHandle(self, record)

    def _safe_start(self, name, input, metadata, tags):
        try:
            return self.start_trace(name, input, metadata=metadata, tags=tags)
        except Exception as e:
            logger.error(f"Failed to start trace '{name}': {e}")
            return NoOpTraceHandle(name)

    def _on_trace_closed(self, record: TraceRecord) -> None:
        if record.success:
            logger.debug(f"{record.name} completed in {record.duration_ms}ms")
        else:
            logger.warning(
                f"{record.name} failed after {record.duration_ms}ms: "
                f"{record.metadata.get('error_message')}"
            )
        self.queue.put(record)

    def _charge_budget(self, record: TraceRecord, metadata: Dict[str, Any]) -> Dict[str, Any]:
        """Charge the agent's budget when end metadata carries model usage not yet costed."""
        if self.budgets is None or "cost" in metadata or any(metadata.get(key) is None for key in _COST_KEYS):
            return {}

        agent_name = metadata.get("agent_name") or record.metadata.get("agent_name") or record.name
        try:
            result = self.budgets.charge(
                agent_name,
                metadata["model"],
                int(metadata["input_tokens"]),
                int(metadata["output_tokens"]),
            )
        except Exception as e:
            logger.error(f"Budget charge failed for {agent_name}: {e}")
            return {}

        return {
            "cost": result.cost,
            "within_budget": result.within_budget,
            "budget_alert": result.alert,
        }

    # ── Wrapping ──────────────────────────────────────────────────────

    async def trace_call(
        self,
        name: str,
        input: Any,
        fn: Callable[[], Awaitable[T]],
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[Sequence[str]] = None,
        metrics: Optional[List] = None,
    ) -> T:
        """Run ``fn`` inside a trace and return its result unchanged."""
        return await self._run(name, input, lambda handle: fn(), metadata, tags, metrics)

    async def trace_call_with_spans(
        self,
        name: str,
        input: Any,
        fn: Callable[[SpanContext], Awaitable[T]],
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> T:
        """Like ``trace_call`` but passes a ``SpanContext`` to ``fn``."""
        if tags is None:
            tags = [name, "agent", "with_spans", self.environment]
        return await self._run(name, input, lambda handle: fn(SpanContext(handle)), metadata, tags, None)

    async def _run(self, name, input, call, metadata, tags, metrics):
        handle = self._safe_start(name, input, metadata, tags)
        try:
            result = await call(handle)
        except Exception as e:
            self._close_quietly(handle, error=e)
            raise

        extra: Dict[str, Any] = {}
        if metrics and not isinstance(handle, NoOpSpanHandle):
            extra["quality_scores"] = await self._self_score(metrics, input, result)
        self._close_quietly(handle, output=result, extra=extra)
        return result

    def _close_quietly(self, handle, output: Any = None, extra: Optional[Dict[str, Any]] = None,
                       error: Optional[BaseException] = None) -> None:
        try:
            dangling = handle.fail_open_spans(DANGLING_SPAN_REASON)
            if dangling:
                logger.error(f"{handle.name}: {DANGLING_SPAN_REASON} ({', '.join(dangling)})")
            if error is not None:
                handle.fail(error)
            else:
                handle.end(output, extra)
        except Exception as e:
            logger.error(f"Failed to record trace '{handle.name}': {e}")

    async def _self_score(self, metrics: List, input: Any, output: Any) -> Dict[str, float]:
        scores: Dict[str, float] = {}
        for metric in metrics:
            try:
                result = await metric(input, output)
                scores[result.name] = result.value
            except Exception as e:
                logger.error(f"Self-scoring with {getattr(metric, 'name', metric)} failed: {error_message(e)}")
        return scores

    def track(self, name: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None):
        """Decorator tracing every call of an async function.

        The call's bound arguments (minus ``self``) become the trace input.
        """
        def decorator(fn):
            trace_name = name or fn.__name__
            signature = inspect.signature(fn)

            @functools.wraps(fn)
            async def wrapper(*args, **kwargs):
                try:
                    bound = signature.bind(*args, **kwargs)
                    bound.apply_defaults()
                    call_input = {k: v for k, v in bound.arguments.items() if k != "self"}
                except TypeError:
                    call_input = {"args": list(args), "kwargs": kwargs}
                return await self.trace_call(
                    trace_name, call_input, lambda: fn(*args, **kwargs), metadata=metadata
                )

            return wrapper

        return decorator

    # ── Shutdown ──────────────────────────────────────────────────────

    async def flush_and_wait(self) -> None:
        await self.queue.flush_and_wait()

    async def aclose(self) -> None:
        await self.queue.close()
        await self.sink.aclose()
