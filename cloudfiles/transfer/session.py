"""
Transfer Sessions

A TransferSession is the per-call state of one upload or download: where
it is in its state machine, its progress, and the first fatal error.
A Transfer wraps a running upload or download task so callers can watch
progress, await the result, or get a completion callback.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..rest.models import FileProperties, FileReference, ServiceResponse
from .progress import ProgressTracker

logger = logging.getLogger(__name__)


class TransferState(Enum):
    IDLE = 'idle'
    CREATING_REMOTE_OBJECT = 'creating_remote_object'
    FETCHING_PROPERTIES = 'fetching_properties'
    TRANSFERRING = 'transferring'
    FINALIZING = 'finalizing'
    DONE = 'done'
    FAILED = 'failed'


TERMINAL_STATES = (TransferState.DONE, TransferState.FAILED)


class TransferSession:
    """State of one transfer call."""

    def __init__(self, target: FileReference, progress: ProgressTracker, kind: str = 'transfer'):
        self.target = target
        self.progress = progress
        self.kind = kind
        self.state = TransferState.IDLE
        self.error: Optional[BaseException] = None

    @property
    def total_size(self) -> Optional[int]:
        return self.progress.total_size

    @property
    def completed(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def failed(self) -> bool:
        return self.error is not None

    def record_error(self, error: BaseException) -> bool:
        """Keep `error` if it is the first. Returns True if it was kept."""
        if self.error is None:
            self.error = error
            return True
        if error is not self.error:
            logger.debug(f"{self.kind} {self.target}: dropping later error: {error}")
        return False

    def transition(self, state: TransferState):
        if self.completed:
            raise RuntimeError(
                f"{self.kind} {self.target} is already {self.state.value}, cannot move to {state.value}"
            )
        logger.debug(f"{self.kind} {self.target}: {self.state.value} -> {state.value}")
        self.state = state


@dataclass
class TransferResult:
    """Outcome of a successful transfer."""
    properties: Optional[FileProperties]
    response: Optional[ServiceResponse] = None
    content_md5: Optional[str] = None
    bytes_transferred: int = 0
    content: Optional[bytes] = None


CompletionCallback = Callable[
    [Optional[BaseException], Optional[FileProperties], Optional[ServiceResponse]], None
]


class Transfer:
    """
    A transfer running as an asyncio task.

    Await it for the TransferResult. If `callback` is given it is called
    exactly once with `(error, properties, response)` when the task ends.
    """

    def __init__(self, coro: Awaitable[TransferResult], progress: ProgressTracker,
                 callback: Optional[CompletionCallback] = None):
        self.progress = progress
        self.task: asyncio.Task = asyncio.ensure_future(coro)
        self._callback = callback
        self.task.add_done_callback(self._on_done)

    def done(self) -> bool:
        return self.task.done()

    def result(self) -> TransferResult:
        return self.task.result()

    def __await__(self):
        return self.task.__await__()

    def _on_done(self, task: asyncio.Task):
        if self._callback is None:
            return

        properties, response, error = None, None, None
        if task.cancelled():
            error = asyncio.CancelledError()
        else:
            error = task.exception()
            if error is None:
                result = task.result()
                properties, response = result.properties, result.response

        try:
            self._callback(error, properties, response)
        except Exception as e:
            logger.error(f"Transfer completion callback failed: {e}")
