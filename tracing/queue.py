"""Bounded delivery queue between the recorder and its sink."""

import asyncio
import logging
from collections import deque
from typing import Deque, Optional

from .models import TraceRecord
from .sinks import Sink

logger = logging.getLogger(__name__)


class TraceQueue:
    """Fire-and-forget delivery of closed traces with a background drain task.

    ``put`` never blocks and never raises. Records put while no event loop is
    running wait in a local buffer until the next ``flush_and_wait``.
    """

    def __init__(self, sink: Sink, maxsize: int = 1000):
        self.sink = sink
        self.maxsize = maxsize
        self.delivered = 0
        self.dropped = 0
        self._pending: Deque[TraceRecord] = deque()
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def size(self) -> int:
        queued = self._queue.qsize() if self._queue is not None else 0
        return queued + len(self._pending)

    def put(self, record: TraceRecord) -> bool:
        """Queue a record for delivery. Returns False when it was dropped."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            if len(self._pending) >= self.maxsize:
                self._drop(record)
                return False
            self._pending.append(record)
            return True

        self._ensure_worker(loop)
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self._drop(record)
            return False
        return True

    def _drop(self, record: TraceRecord) -> None:
        self.dropped += 1
        logger.warning(f"Trace queue full ({self.maxsize}); dropping trace '{record.name}' ({record.id})")

    def _ensure_worker(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._loop is loop and self._worker is not None and not self._worker.done():
            return

        if self._queue is not None and self._loop is not loop:
            # Queue bound to a previous loop; keep its records for the next flush
            while not self._queue.empty():
                self._pending.append(self._queue.get_nowait())

        if self._queue is None or self._loop is not loop:
            self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._loop = loop
        self._worker = loop.create_task(self._drain())

    async def _drain(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                await self._deliver(record)
            finally:
                self._queue.task_done()

    async def _deliver(self, record: TraceRecord) -> None:
        try:
            await self.sink.send_trace(record)
            self.delivered += 1
        except Exception as e:
            self.dropped += 1
            logger.error(f"Failed to deliver trace '{record.name}' ({record.id}) to {self.sink.name} sink: {e}")

    async def flush_and_wait(self) -> None:
        """Wait until every queued record has been attempted."""
        while self._pending:
            await self._deliver(self._pending.popleft())

        if self._queue is None:
            return

        worker_alive = self._worker is not None and not self._worker.done()
        if self._loop is asyncio.get_running_loop() and worker_alive:
            await self._queue.join()
            return

        while not self._queue.empty():
            record = self._queue.get_nowait()
            await self._deliver(record)
            self._queue.task_done()

    async def close(self) -> None:
        await self.flush_and_wait()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
