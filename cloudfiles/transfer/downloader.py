"""
Chunked Downloader

Design Decision: Ordered Writes
===============================

Options Considered:
1. Write each range at its offset as it arrives
   - Needs a seekable destination
   - Streams and running hashes need bytes in order

2. Collect every range, write at the end
   - Memory grows with the file

3. Hold an early range until the ranges before it are written
   - Works for any destination
   - Held data is bounded by the executor window

Decision: Hold until its turn
- A sink write waits until its offset is the next one expected
- The sink keeps a running MD5 of what it wrote, checked against the
  stored content MD5 when the whole file was read

Download Flow:
1. Fetch properties (size, content MD5)
2. Clip the requested range to the file
3. Get each chunk-size window in parallel, validate length and range MD5
4. Write in order, then check the end-to-end MD5
"""

import asyncio
import base64
import functools
import hashlib
import inspect
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles

from ..errors import IntegrityError, ValidationError
from ..file.chunker import compute_md5
from ..rest.models import FileReference
from ..rest.protocol import RangeStore
from .batch import BatchExecutor, UnitOperation
from .options import TransferOptions
from .progress import ProgressTracker
from .session import TransferResult, TransferSession, TransferState

logger = logging.getLogger(__name__)


class DownloadSink:
    """
    Destination for downloaded bytes. Writes are applied in offset order.

    Offsets are relative to the first byte of the requested range.
    """

    def __init__(self):
        self._next_offset = 0
        self._turns: Dict[int, asyncio.Future] = {}
        self._md5 = hashlib.md5()
        self._error: Optional[BaseException] = None

    @property
    def next_offset(self) -> int:
        return self._next_offset

    @property
    def held(self) -> int:
        """Writes waiting for their turn."""
        return len(self._turns)

    async def open(self):
        """Prepare the destination before the first write."""

    async def write(self, offset: int, data: bytes):
        if self._error is not None:
            raise self._error

        if offset != self._next_offset:
            turn = asyncio.get_running_loop().create_future()
            self._turns[offset] = turn
            try:
                await turn
            finally:
                self._turns.pop(offset, None)

        await self._write(data)
        self._md5.update(data)
        self._next_offset += len(data)

        nxt = self._turns.get(self._next_offset)
        if nxt is not None and not nxt.done():
            nxt.set_result(None)

    def abandon(self, error: BaseException):
        """Fail every write still waiting for its turn, and all later ones."""
        if self._error is None:
            self._error = error
        for turn in self._turns.values():
            if not turn.done():
                turn.set_exception(error)

    def content_md5(self) -> str:
        return base64.b64encode(self._md5.digest()).decode('ascii')

    async def close(self):
        """Flush after a successful download."""

    async def discard(self):
        """Clean up after a failed download."""

    async def _write(self, data: bytes):
        raise NotImplementedError


class BytesSink(DownloadSink):
    """Collects the download in memory."""

    def __init__(self):
        super().__init__()
        self._buffer = bytearray()

    async def _write(self, data: bytes):
        self._buffer += data

    def getvalue(self) -> bytes:
        return bytes(self._buffer)


class StreamSink(DownloadSink):
    """Writes to a caller-owned stream. Its `write` may be sync or async."""

    def __init__(self, stream: Any):
        super().__init__()
        self.stream = stream

    async def _write(self, data: bytes):
        result = self.stream.write(data)
        if inspect.isawaitable(result):
            await result


class FileSink(DownloadSink):
    """Writes to a local file, removing it if the download fails."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        self._file = None
        self._opened = False

    async def open(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = await aiofiles.open(self.path, 'wb')
        self._opened = True

    async def _write(self, data: bytes):
        await self._file.write(data)

    async def close(self):
        if self._file is not None:
            await self._file.close()
            self._file = None

    async def discard(self):
        await self.close()
        if self._opened and self.path.exists():
            logger.debug(f"Removing partial download {self.path}")
            self.path.unlink()


class FileDownloader:
    """
    Downloads one remote file, or an inclusive byte range of it, to a sink.

    Args:
        store: Remote call primitives
        target: The file to read
        sink: Where the bytes go
        options: Per-call snapshot
        range_start: First byte to read (default 0)
        range_end: Last byte to read, inclusive (default end of file)
        progress: Tracker to update (one is created if omitted)
    """

    def __init__(self, store: RangeStore, target: FileReference, sink: DownloadSink,
                 options: TransferOptions, range_start: Optional[int] = None,
                 range_end: Optional[int] = None,
                 progress: Optional[ProgressTracker] = None):
        self.store = store
        self.target = target
        self.sink = sink
        self.options = options
        self.range_start = range_start
        self.range_end = range_end

        self.progress = progress or ProgressTracker(name=str(target))
        self.session = TransferSession(target, self.progress, kind='download')
        self.executor: Optional[BatchExecutor] = None

    def _validate_range(self):
        start, end = self.range_start, self.range_end
        if start is not None and start < 0:
            raise ValidationError(f"range_start must not be negative, got {start}")
        if end is not None:
            if end < 0:
                raise ValidationError(f"range_end must not be negative, got {end}")
            if end < (start or 0):
                raise ValidationError(f"range_end {end} is before range_start {start or 0}")

    async def run(self) -> TransferResult:
        """Run the download. Raises the first fatal error."""
        try:
            self.options.validate()
            self._validate_range()

            self.session.transition(TransferState.FETCHING_PROPERTIES)
            properties = await self.store.get_properties(self.target)
            file_size = properties.content_length or 0

            start = self.range_start or 0
            if file_size == 0:
                end = start - 1
            elif start >= file_size:
                raise ValidationError(
                    f"range_start {start} is beyond the end of {self.target} ({file_size} bytes)"
                )
            else:
                end = file_size - 1
                if self.range_end is not None:
                    end = min(self.range_end, end)

            length = end - start + 1
            whole_file = start == 0 and length == file_size
            self.progress.set_total_size(length)
            logger.info(f"Downloading {self.target} bytes {start}-{end} ({length} bytes)")

            await self.sink.open()
            self.session.transition(TransferState.TRANSFERRING)
            executor = BatchExecutor(
                name=f"download {self.target}",
                concurrency=self.options.parallel_operation_thread_count,
            )
            self.executor = executor
            await self._transfer(executor, start, end)
            if self.session.error is not None:
                raise self.session.error

            self.session.transition(TransferState.FINALIZING)
            content_md5 = self.sink.content_md5()
            if (whole_file and properties.content_md5
                    and not self.options.disable_md5_validation
                    and content_md5 != properties.content_md5):
                raise IntegrityError(
                    f"MD5 mismatch for {self.target}: stored {properties.content_md5}, "
                    f"received {content_md5}"
                )
            await self.sink.close()

        except BaseException as e:
            self.session.record_error(e)
            self.session.transition(TransferState.FAILED)
            await self.sink.discard()
            logger.error(f"Download of {self.target} failed: {self.session.error}")
            if self.session.error is e:
                raise
            raise self.session.error

        self.session.transition(TransferState.DONE)
        logger.info(f"Downloaded {self.progress.get_complete_size(human_readable=True)} from {self.target}")

        return TransferResult(
            properties=properties,
            response=properties.response,
            content_md5=content_md5,
            bytes_transferred=length,
            content=self.sink.getvalue() if isinstance(self.sink, BytesSink) else None,
        )

    async def _transfer(self, executor: BatchExecutor, start: int, end: int):
        chunk_size = self.options.chunk_size
        try:
            for offset in range(start, end + 1, chunk_size):
                range_end = min(offset + chunk_size - 1, end)
                await executor.wait_for_capacity()
                if self.session.error is not None:
                    break
                op = UnitOperation(
                    functools.partial(self._get_range, offset, range_end, start),
                    name=f"range@{offset}",
                    on_complete=self._on_range_complete,
                )
                if not executor.try_submit(op):
                    await executor.submit(op)
        finally:
            executor.notify_producer_done()

        await executor.join()

    async def _get_range(self, offset: int, range_end: int, start: int) -> int:
        validate_md5 = self.options.use_transactional_md5
        data, range_properties = await self.store.get_range(
            self.target, offset, range_end, validate_md5=validate_md5,
        )

        expected = range_end - offset + 1
        if len(data) != expected:
            raise IntegrityError(
                f"Range {offset}-{range_end} of {self.target} returned {len(data)} bytes, "
                f"expected {expected}"
            )

        if validate_md5 and not self.options.disable_md5_validation:
            range_md5 = range_properties.content_md5
            if not range_md5:
                raise IntegrityError(
                    f"Range {offset}-{range_end} of {self.target} came back without a content MD5"
                )
            if compute_md5(data) != range_md5:
                raise IntegrityError(
                    f"MD5 mismatch for range {offset}-{range_end} of {self.target}"
                )

        await self.sink.write(offset - start, data)
        return len(data)

    def _on_range_complete(self, op: UnitOperation):
        if op.error is None:
            self.progress.increment(op.result)
        else:
            self.session.record_error(op.error)
            self.sink.abandon(op.error)
