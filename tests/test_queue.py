"""Tests for the bounded trace delivery queue."""

import asyncio

import pytest

from tracing.models import TraceRecord
from tracing.queue import TraceQueue
from tracing.sinks import NullSink


class MemorySink(NullSink):
    """Active sink that keeps delivered traces in memory."""

    enabled = True
    name = "memory"

    def __init__(self, fail_on=None, delay=0.0):
        super().__init__()
        self.traces = []
        self.fail_on = fail_on
        self.delay = delay

    async def send_trace(self, record):
        if self.delay:
            await asyncio.sleep(self.delay)
        if record.name == self.fail_on:
            raise RuntimeError("sink down")
        self.traces.append(record)


def record(name="op") -> TraceRecord:
    return TraceRecord(name=name)


class TestTraceQueue:
    @pytest.mark.asyncio
    async def test_flush_delivers_everything_in_order(self):
        sink = MemorySink(delay=0.001)
        queue = TraceQueue(sink)
        for n in range(5):
            assert queue.put(record(f"op{n}")) is True
        await queue.flush_and_wait()
        assert [t.name for t in sink.traces] == [f"op{n}" for n in range(5)]
        assert queue.delivered == 5
        assert queue.size == 0
        await queue.close()

    @pytest.mark.asyncio
    async def test_full_queue_drops(self):
        sink = MemorySink()
        queue = TraceQueue(sink, maxsize=2)
        results = [queue.put(record(f"op{n}")) for n in range(3)]
        assert results == [True, True, False]
        assert queue.dropped == 1
        await queue.close()
        assert len(sink.traces) == 2

    @pytest.mark.asyncio
    async def test_delivery_failure_is_logged_not_raised(self, caplog):
        sink = MemorySink(fail_on="bad")
        queue = TraceQueue(sink)
        queue.put(record("bad"))
        queue.put(record("good"))
        await queue.flush_and_wait()
        assert [t.name for t in sink.traces] == ["good"]
        assert queue.dropped == 1
        assert "Failed to deliver trace 'bad'" in caplog.text
        await queue.close()

    def test_put_without_loop_buffers_until_flush(self):
        sink = MemorySink()
        queue = TraceQueue(sink, maxsize=1)
        assert queue.put(record("first")) is True
        assert queue.put(record("second")) is False
        assert queue.size == 1

        asyncio.run(queue.flush_and_wait())
        assert [t.name for t in sink.traces] == ["first"]

    def test_survives_event_loop_change(self):
        sink = MemorySink()
        queue = TraceQueue(sink)

        async def put_only():
            queue.put(record("from-first-loop"))

        asyncio.run(put_only())
        asyncio.run(queue.flush_and_wait())
        assert [t.name for t in sink.traces] == ["from-first-loop"]

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        queue = TraceQueue(MemorySink())
        queue.put(record())
        await queue.close()
        await queue.close()
        assert queue.delivered == 1
