import asyncio

import pytest

from geoload.errors import QueueClosed
from geoload.models import Delivered, FatalFailure, UploadOptions, UploadTask
from geoload.queue import UploadQueue

from helpers import point


def _task(i):
    return UploadTask(target_id="sp1", options=UploadOptions(), tag_string="", features=(point(str(i)),))


def test_backpressure_bounds_in_flight():
    done = []

    async def handler(task):
        await asyncio.sleep(0.005)
        return Delivered(success_count=len(task))

    async def go():
        q = UploadQueue(handler, on_complete=lambda t, o: done.append(o), workers=2, max_in_flight=3)
        async with q:
            for i in range(20):
                await q.enqueue(_task(i))
                assert q.state.in_flight <= 4
        return q.state

    state = asyncio.run(go())
    assert len(done) == 20
    assert state.completed == 20
    assert state.in_flight == 0
    assert 1 <= state.peak_in_flight <= 4


def test_enqueue_after_drain_is_refused():
    async def handler(task):
        return Delivered(success_count=len(task))

    async def go():
        q = UploadQueue(handler, workers=1)
        await q.enqueue(_task(0))
        await q.drain()
        with pytest.raises(QueueClosed):
            await q.enqueue(_task(1))
        return q.state

    state = asyncio.run(go())
    assert state.completed == 1
    assert state.shutdown_requested


def test_handler_exception_becomes_fatal_failure():
    outcomes = []

    async def handler(task):
        if task.features[0]["id"] == "1":
            raise RuntimeError("boom")
        return Delivered(success_count=len(task))

    async def go():
        async with UploadQueue(handler, on_complete=lambda t, o: outcomes.append(o), workers=3) as q:
            for i in range(3):
                await q.enqueue(_task(i))
        return q.state

    state = asyncio.run(go())
    assert state.completed == 3
    assert state.failed == 1
    fatal = [o for o in outcomes if isinstance(o, FatalFailure)]
    assert len(fatal) == 1 and fatal[0].reason == "boom"
    assert sum(o.success_count for o in outcomes if isinstance(o, Delivered)) == 2


def test_callback_error_does_not_stop_workers():
    async def handler(task):
        return Delivered(success_count=1)

    def bad_callback(task, outcome):
        raise ValueError("callback failed")

    async def go():
        async with UploadQueue(handler, on_complete=bad_callback, workers=1) as q:
            for i in range(3):
                await q.enqueue(_task(i))
        return q.state

    assert asyncio.run(go()).completed == 3
