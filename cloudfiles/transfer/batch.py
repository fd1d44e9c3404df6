"""
Bounded Batch Executor

Design Decision: Concurrency Window
===================================

Options Considered:
1. asyncio.gather() over every range
   - Simplest
   - Unbounded: a 10GB file means 2500 requests and buffers at once

2. asyncio.Semaphore around each request
   - Bounded requests
   - Producer still runs ahead and buffers every chunk it reads

3. Explicit window with capacity signalling
   - The producer asks for capacity before reading further
   - Completion, drain and all-done are observable events

Decision: Explicit window
- One asyncio task per unit operation, at most `concurrency` running
- First error wins; later failures are logged and dropped
- In-flight operations are never cancelled, they drain
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Set

logger = logging.getLogger(__name__)


class OperationState(Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


class UnitOperation:
    """
    One remote call for one chunk or range.

    Args:
        call: Zero-argument coroutine factory performing the call
        chunk: The chunk this operation owns, if any
        on_complete: Called synchronously with this operation once it is
            SUCCEEDED or FAILED
    """

    def __init__(self, call: Callable[[], Awaitable[Any]], chunk: Any = None,
                 on_complete: Optional[Callable[['UnitOperation'], None]] = None,
                 name: str = ''):
        self.call = call
        self.chunk = chunk
        self.on_complete = on_complete
        self.name = name or (f"range@{chunk.offset}" if chunk is not None else 'op')

        self.state = OperationState.PENDING
        self.result: Any = None
        self.error: Optional[BaseException] = None

    @property
    def done(self) -> bool:
        return self.state in (OperationState.SUCCEEDED, OperationState.FAILED)

    def __repr__(self) -> str:
        return f"<UnitOperation {self.name} {self.state.value}>"


class BatchExecutor:
    """Runs UnitOperations with at most `concurrency` in flight."""

    def __init__(self, name: str = '', concurrency: int = 1):
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.name = name
        self.concurrency = concurrency

        self._in_flight = 0
        self._max_in_flight = 0
        self._submitted = 0
        self._completed = 0
        self._error: Optional[BaseException] = None

        self._producer_done = False
        self._finished = False
        self._tasks: Set[asyncio.Task] = set()

        self._capacity = asyncio.Event()
        self._capacity.set()
        self._all_complete = asyncio.Event()
        self._drain_callbacks: List[Callable[[], None]] = []
        self._complete_callbacks: List[Callable[[Optional[BaseException]], None]] = []

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def max_in_flight(self) -> int:
        """Highest in-flight count observed."""
        return self._max_in_flight

    @property
    def is_full(self) -> bool:
        return self._in_flight >= self.concurrency

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def submitted(self) -> int:
        return self._submitted

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def finished(self) -> bool:
        return self._finished

    def try_submit(self, op: UnitOperation) -> bool:
        """
        Start `op` if the window has room.

        Returns:
            False if the window is full, True once the operation is accepted.
            An operation accepted after an error has been recorded fails
            immediately with that error and never runs.
        """
        if self._producer_done:
            raise RuntimeError(f"{self.name}: submit after the producer finished")
        if op.state is not OperationState.PENDING:
            raise RuntimeError(f"{op!r} was already submitted")
        if self.is_full:
            return False

        self._submitted += 1
        self._in_flight += 1
        self._max_in_flight = max(self._max_in_flight, self._in_flight)
        if self.is_full:
            self._capacity.clear()
        op.state = OperationState.RUNNING

        if self._error is not None:
            logger.debug(f"{self.name}: failing {op.name} without running, executor already failed")
            self._complete(op, self._error)
            return True

        logger.debug(f"{self.name}: started {op.name} ({self._in_flight}/{self.concurrency} in flight)")
        task = asyncio.get_running_loop().create_task(self._run(op))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def wait_for_capacity(self):
        """Wait until another operation may be submitted."""
        while self.is_full:
            self._capacity.clear()
            await self._capacity.wait()

    async def submit(self, op: UnitOperation):
        """Submit `op`, waiting for room in the window first."""
        while not self.try_submit(op):
            await self.wait_for_capacity()

    def notify_producer_done(self):
        """No more operations will be submitted."""
        self._producer_done = True
        self._try_finish()

    def on_drain(self, callback: Callable[[], None]):
        """Call `callback()` whenever the window drops from full."""
        self._drain_callbacks.append(callback)

    def on_all_complete(self, callback: Callable[[Optional[BaseException]], None]):
        """Call `callback(error)` once everything submitted has finished."""
        if self._finished:
            callback(self._error)
        else:
            self._complete_callbacks.append(callback)

    async def join(self) -> Optional[BaseException]:
        """Wait for all operations. Returns the first error, if any."""
        await self._all_complete.wait()
        return self._error

    async def _run(self, op: UnitOperation):
        try:
            op.result = await op.call()
        except asyncio.CancelledError as e:
            self._complete(op, e)
            raise
        except Exception as e:
            self._complete(op, e)
        else:
            self._complete(op, None)

    def _complete(self, op: UnitOperation, error: Optional[BaseException]):
        op.error = error
        op.state = OperationState.FAILED if error is not None else OperationState.SUCCEEDED
        self._completed += 1

        if error is not None:
            if self._error is None:
                self._error = error
                logger.warning(f"{self.name}: {op.name} failed: {error}")
            elif error is not self._error:
                logger.debug(f"{self.name}: dropping later failure of {op.name}: {error}")

        if op.on_complete is not None:
            try:
                op.on_complete(op)
            except Exception as e:
                logger.error(f"{self.name}: completion handler for {op.name} failed: {e}")
                if self._error is None:
                    self._error = e

        was_full = self.is_full
        self._in_flight -= 1
        self._capacity.set()
        if was_full:
            for callback in self._drain_callbacks:
                callback()

        self._try_finish()

    def _try_finish(self):
        if self._finished or not self._producer_done or self._in_flight:
            return
        self._finished = True
        logger.debug(f"{self.name}: all {self._completed} operations complete")
        self._all_complete.set()
        for callback in self._complete_callbacks:
            callback(self._error)
        self._complete_callbacks.clear()
