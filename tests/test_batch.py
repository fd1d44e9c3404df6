"""Tests for the bounded batch executor."""

import asyncio

import pytest

from cloudfiles.transfer.batch import BatchExecutor, OperationState, UnitOperation


class Recorder:
    """Coroutine factories that track overlap."""

    def __init__(self):
        self.running = 0
        self.peak = 0
        self.started = []

    def op(self, key, delay=0.01, error=None, on_complete=None):
        async def call():
            self.started.append(key)
            self.running += 1
            self.peak = max(self.peak, self.running)
            try:
                await asyncio.sleep(delay)
                if error is not None:
                    raise error
                return key
            finally:
                self.running -= 1

        return UnitOperation(call, name=str(key), on_complete=on_complete)


class TestBatchExecutor:

    @pytest.mark.asyncio
    async def test_window_bounds_concurrency(self):
        recorder = Recorder()
        executor = BatchExecutor('test', concurrency=3)
        for i in range(10):
            await executor.submit(recorder.op(i))
        executor.notify_producer_done()

        assert await executor.join() is None
        assert executor.completed == 10
        assert executor.max_in_flight == 3
        assert recorder.peak == 3

    @pytest.mark.asyncio
    async def test_single_slot_serializes(self):
        recorder = Recorder()
        executor = BatchExecutor('test', concurrency=1)
        for i in range(4):
            await executor.submit(recorder.op(i))
        executor.notify_producer_done()
        await executor.join()

        assert recorder.peak == 1
        assert recorder.started == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_try_submit_refuses_when_full(self):
        recorder = Recorder()
        executor = BatchExecutor('test', concurrency=1)
        assert executor.try_submit(recorder.op('a'))
        assert executor.is_full
        assert not executor.try_submit(recorder.op('b'))

        await executor.wait_for_capacity()
        assert not executor.is_full
        executor.notify_producer_done()
        await executor.join()

    @pytest.mark.asyncio
    async def test_first_error_wins(self):
        recorder = Recorder()
        executor = BatchExecutor('test', concurrency=2)
        first = ValueError('first')
        await executor.submit(recorder.op('a', delay=0.01, error=first))
        await executor.submit(recorder.op('b', delay=0.05, error=ValueError('second')))
        executor.notify_producer_done()

        assert await executor.join() is first

    @pytest.mark.asyncio
    async def test_submit_after_error_fails_without_running(self):
        recorder = Recorder()
        executor = BatchExecutor('test', concurrency=2)
        boom = RuntimeError('boom')
        await executor.submit(recorder.op('a', delay=0, error=boom))
        await asyncio.sleep(0.01)
        assert executor.error is boom

        completed = []
        late = recorder.op('late', on_complete=completed.append)
        assert executor.try_submit(late)
        assert late.state is OperationState.FAILED
        assert late.error is boom
        assert completed == [late]
        assert 'late' not in recorder.started

    @pytest.mark.asyncio
    async def test_submit_after_producer_done_raises(self):
        executor = BatchExecutor('test')
        executor.notify_producer_done()
        with pytest.raises(RuntimeError):
            executor.try_submit(Recorder().op('a'))

    @pytest.mark.asyncio
    async def test_all_complete_fires_once(self):
        recorder = Recorder()
        executor = BatchExecutor('test', concurrency=2)
        fired = []
        executor.on_all_complete(fired.append)

        await executor.submit(recorder.op('a'))
        executor.notify_producer_done()
        await executor.join()
        executor.notify_producer_done()

        assert fired == [None]

        late = []
        executor.on_all_complete(late.append)
        assert late == [None]

    @pytest.mark.asyncio
    async def test_empty_batch_completes(self):
        executor = BatchExecutor('test')
        executor.notify_producer_done()
        assert await executor.join() is None
        assert executor.finished

    @pytest.mark.asyncio
    async def test_drain_fires_when_window_frees(self):
        recorder = Recorder()
        executor = BatchExecutor('test', concurrency=1)
        drains = []
        executor.on_drain(lambda: drains.append(executor.in_flight))

        await executor.submit(recorder.op('a'))
        await executor.submit(recorder.op('b'))
        executor.notify_producer_done()
        await executor.join()

        assert drains == [0, 0]

    @pytest.mark.asyncio
    async def test_completion_callback_sees_result(self):
        results = []
        executor = BatchExecutor('test')
        op = Recorder().op('x', delay=0, on_complete=lambda o: results.append((o.state, o.result)))
        await executor.submit(op)
        executor.notify_producer_done()
        await executor.join()

        assert results == [(OperationState.SUCCEEDED, 'x')]

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            BatchExecutor('test', concurrency=0)
