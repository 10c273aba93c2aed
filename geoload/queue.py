"""Bounded-concurrency upload queue.

A fixed pool of worker tasks pulls ``UploadTask`` items off an unbounded
``asyncio.Queue``. Producers are slowed by an admission threshold on the
number of tasks in flight (queued or running), and ``drain()`` waits for the
count to reach zero before stopping the workers.

Usage::

    async with UploadQueue(handler, on_complete=agg.record, workers=10) as q:
        for task in tasks:
            await q.enqueue(task)
"""

from __future__ import annotations

import asyncio
import typing as t

from geoload.errors import QueueClosed
from geoload.models import FatalFailure, Outcome, QueueState, UploadTask
from geoload.utils import get_logger

logger = get_logger(__name__)

Handler = t.Callable[[UploadTask], t.Awaitable[Outcome]]
Callback = t.Callable[[UploadTask, Outcome], None]


class UploadQueue:
    def __init__(
        self,
        handler: Handler,
        *,
        on_complete: t.Optional[Callback] = None,
        workers: int = 10,
        max_in_flight: int = 25,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._handler = handler
        self._on_complete = on_complete
        self.workers = workers
        self.max_in_flight = max_in_flight
        self.state = QueueState()
        self._queue: t.Optional[asyncio.Queue] = None
        self._cond: t.Optional[asyncio.Condition] = None
        self._tasks: t.List[asyncio.Task] = []

    async def __aenter__(self) -> "UploadQueue":
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.drain()

    def start(self) -> None:
        if self._tasks:
            return
        self._queue = asyncio.Queue()
        self._cond = asyncio.Condition()
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"upload-worker-{i}") for i in range(self.workers)
        ]
        logger.debug("queue.start workers=%d max_in_flight=%d", self.workers, self.max_in_flight)

    async def enqueue(self, task: UploadTask) -> None:
        """Admit a task, suspending while too many tasks are in flight."""
        if self.state.shutdown_requested:
            raise QueueClosed("queue is draining; no new tasks accepted")
        if not self._tasks:
            self.start()
        async with self._cond:
            if self.state.shutdown_requested:
                raise QueueClosed("queue is draining; no new tasks accepted")
            await self._cond.wait_for(lambda: self.state.in_flight <= self.max_in_flight)
            if self.state.shutdown_requested:
                raise QueueClosed("queue is draining; no new tasks accepted")
            self.state.in_flight += 1
            self.state.peak_in_flight = max(self.state.peak_in_flight, self.state.in_flight)
        self._queue.put_nowait(task)

    async def drain(self) -> QueueState:
        """Refuse new tasks and wait until every admitted task has finished."""
        if not self._tasks:
            self.state.shutdown_requested = True
            return self.state
        async with self._cond:
            self.state.shutdown_requested = True
            self._cond.notify_all()
            await self._cond.wait_for(lambda: self.state.in_flight == 0)
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info(
            "queue.drained completed=%d failed=%d peak_in_flight=%d",
            self.state.completed,
            self.state.failed,
            self.state.peak_in_flight,
        )
        return self.state

    async def _run(self, task: UploadTask) -> Outcome:
        try:
            return await self._handler(task)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("upload.task failed target=%s size=%d error=%s", task.target_id, len(task), e)
            return FatalFailure(reason=str(e) or type(e).__name__, records=list(task.features))

    async def _worker(self, index: int) -> None:
        while True:
            task = await self._queue.get()
            try:
                outcome = await self._run(task)
                if isinstance(outcome, FatalFailure):
                    self.state.failed += 1
                if self._on_complete is not None:
                    try:
                        self._on_complete(task, outcome)
                    except Exception:
                        logger.exception("queue.on_complete raised worker=%d", index)
            finally:
                self._queue.task_done()
                async with self._cond:
                    self.state.in_flight -= 1
                    self.state.completed += 1
                    self._cond.notify_all()
