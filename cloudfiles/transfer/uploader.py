"""
Chunked Uploader

Design Decision: Upload Pipeline
================================

Options Considered:
1. Read everything, then upload ranges in parallel
   - Simple
   - Memory grows with the file

2. Read and upload in lock-step, one range at a time
   - Bounded memory
   - No parallelism

3. Pipelined: read the next chunk while earlier ranges are in flight
   - Bounded by the allocator pool and the executor window
   - A slow network pauses reads, a slow disk starves the window

Decision: Pipelined
- Buffers come from a RangeAllocator sized to the window
- The producer waits for capacity before every submit
- After the first failure nothing new is submitted; in-flight ranges drain

Upload Flow:
1. Create the remote file at its final size (skipped when appending)
2. Read chunks, skip all-zero file chunks, put each range
3. Wait for every range
4. Set properties (content settings and content MD5)
"""

import asyncio
import functools
import logging
from typing import Optional

from ..errors import ProducerError, StorageError, ValidationError
from ..file.chunker import Chunk, ChunkSource, StreamChunkSource, compute_md5
from ..rest.models import FileReference
from ..rest.protocol import RangeStore
from .batch import BatchExecutor, UnitOperation
from .options import MAX_RANGE_SIZE, TransferOptions
from .progress import ProgressTracker
from .session import TransferResult, TransferSession, TransferState

logger = logging.getLogger(__name__)

# create_size default: create the file at the source's size
SOURCE_SIZE = object()


class FileUploader:
    """
    Uploads one ChunkSource to one remote file.

    Args:
        store: Remote call primitives
        target: The file to write
        source: Where the bytes come from
        options: Per-call snapshot
        create_size: Size to create the file at; None appends to an
            existing file without creating it
        progress: Tracker to update (one is created if omitted)
        content_md5: Explicit MD5 to store, overriding the computed one
    """

    def __init__(self, store: RangeStore, target: FileReference, source: ChunkSource,
                 options: TransferOptions, create_size=SOURCE_SIZE,
                 progress: Optional[ProgressTracker] = None,
                 content_md5: Optional[str] = None):
        self.store = store
        self.target = target
        self.source = source
        self.options = options
        self.create_size = source.total_size if create_size is SOURCE_SIZE else create_size
        self.content_md5 = content_md5

        self.progress = progress or ProgressTracker(name=str(target))
        self.session = TransferSession(target, self.progress, kind='upload')
        self.executor: Optional[BatchExecutor] = None

    @property
    def expected_size(self) -> Optional[int]:
        """Bytes the source must produce, when known."""
        if self.create_size is not None:
            return self.create_size
        return self.source.total_size

    async def run(self) -> TransferResult:
        """Run the upload. Raises the first fatal error."""
        try:
            self.options.validate()
            if self.expected_size is not None:
                self.progress.set_total_size(self.expected_size)

            logger.info(f"Uploading to {self.target} ({self._size_label()})")
            executor = BatchExecutor(
                name=f"upload {self.target}",
                concurrency=self.options.parallel_operation_thread_count,
            )
            self.executor = executor

            if self.create_size is not None:
                self.session.transition(TransferState.CREATING_REMOTE_OBJECT)
                await self.store.create_file(
                    self.target,
                    self.create_size,
                    settings=self.options.content_settings,
                    metadata=self.options.metadata,
                )

            self.session.transition(TransferState.TRANSFERRING)
            await self._transfer(executor)
            if self.session.error is not None:
                raise self.session.error

            self._check_produced_size()

            self.session.transition(TransferState.FINALIZING)
            content_md5 = self._final_content_md5()
            settings = self.options.content_settings.model_copy(update={'content_md5': content_md5})
            properties = await self.store.set_properties(self.target, settings)

        except BaseException as e:
            self.session.record_error(e)
            self.session.transition(TransferState.FAILED)
            await self.source.close()
            logger.error(f"Upload to {self.target} failed: {self.session.error}")
            if self.session.error is e:
                raise
            raise self.session.error

        if self.progress.total_size is None:
            self.progress.set_total_size(self.source.bytes_read)
        self.session.transition(TransferState.DONE)
        logger.info(f"Uploaded {self.progress.get_complete_size(human_readable=True)} to {self.target}")

        return TransferResult(
            properties=properties,
            response=properties.response,
            content_md5=content_md5,
            bytes_transferred=self.source.bytes_read,
        )

    async def _transfer(self, executor: BatchExecutor):
        """Produce and submit every chunk, then wait for the window to drain."""
        try:
            while True:
                try:
                    chunk = await self.source.next()
                except Exception as e:
                    raise ProducerError(f"Failed to read data for {self.target}: {e}") from e
                if chunk is None:
                    break

                self._check_chunk(chunk)

                if self.source.skips_zero_chunks and chunk.is_all_zero():
                    logger.debug(f"Skipping all-zero range {chunk.offset}-{chunk.end}")
                    self.progress.increment(chunk.length)
                    self._release(chunk)
                    continue

                content_md5 = None
                if self.options.use_transactional_md5:
                    content_md5 = compute_md5(chunk.data)

                await executor.wait_for_capacity()
                if self.session.error is not None:
                    self._release(chunk)
                    break

                op = UnitOperation(
                    functools.partial(self.store.put_range, self.target, chunk.offset,
                                      chunk.data, content_md5=content_md5),
                    chunk=chunk,
                    on_complete=self._on_range_complete,
                )
                if not executor.try_submit(op):
                    await executor.submit(op)
        except Exception as e:
            self.session.record_error(e)
        finally:
            executor.notify_producer_done()

        await executor.join()

    def _check_chunk(self, chunk: Chunk):
        if chunk.length > MAX_RANGE_SIZE:
            self._release(chunk)
            raise ValidationError(
                f"Range {chunk.offset}-{chunk.end} is {chunk.length} bytes, "
                f"over the {MAX_RANGE_SIZE}-byte range-write limit"
            )
        expected = self.expected_size
        if expected is not None and chunk.offset + chunk.length > expected:
            self._release(chunk)
            raise ValidationError(
                f"Source produced more than the declared {expected} bytes for {self.target}"
            )

    def _check_produced_size(self):
        expected = self.expected_size
        produced = self.source.bytes_read
        if expected is not None and produced != expected:
            raise ValidationError(
                f"Source ended after {produced} of the declared {expected} bytes for {self.target}"
            )

    def _on_range_complete(self, op: UnitOperation):
        chunk: Chunk = op.chunk
        self._release(chunk)
        if op.error is None:
            self.progress.increment(chunk.length)
        else:
            self.session.record_error(op.error)

    def _release(self, chunk: Chunk):
        if chunk.buffer is not None:
            self.source.allocator.release(chunk.buffer)
            chunk.buffer = None

    def _final_content_md5(self) -> Optional[str]:
        if self.content_md5 is not None:
            return self.content_md5
        if self.options.content_settings.content_md5 is not None:
            return self.options.content_settings.content_md5
        if self.options.store_content_md5:
            return self.source.content_md5()
        return None

    def _size_label(self) -> str:
        if self.expected_size is None:
            return 'unknown size'
        return f"{self.expected_size} bytes"


class FileWriter:
    """
    Writable stream that uploads everything written to it.

    Usage:
        async with service.open_write_stream('share', '', 'log.txt', length=11) as w:
            await w.write(b'hello ')
            await w.write(b'world')
    """

    def __init__(self, uploader: FileUploader):
        if not isinstance(uploader.source, StreamChunkSource):
            raise TypeError('FileWriter needs an uploader fed by a StreamChunkSource')
        self.uploader = uploader
        self.source: StreamChunkSource = uploader.source
        self._task: Optional[asyncio.Task] = None
        self._bytes_written = 0

    @property
    def progress(self) -> ProgressTracker:
        return self.uploader.progress

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    @property
    def closed(self) -> bool:
        return self._task is not None and self._task.done()

    def start(self) -> 'FileWriter':
        """Start the upload task. Writes block until it consumes them."""
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self.uploader.run())
            # A failed upload stops consuming; unblock writers
            self._task.add_done_callback(lambda _: self.source.discard())
        return self

    async def write(self, data) -> int:
        self.start()
        if self._task.done():
            await self._task
            raise ValidationError(f"Write stream for {self.uploader.target} is closed")
        if self.source.input_closed:
            raise ValidationError(f"Write stream for {self.uploader.target} is closed")
        await self.source.feed(data)
        self._bytes_written += len(data)
        return len(data)

    async def close(self) -> TransferResult:
        """Finish writing and wait for the upload."""
        self.start()
        self.source.end()
        return await self._task

    async def abort(self, error: Optional[BaseException] = None) -> Optional[BaseException]:
        """Fail the upload. Returns the error it failed with."""
        self.start()
        self.source.fail(error or ProducerError('Write stream aborted'))
        try:
            await self._task
        except StorageError as e:
            return e
        return None

    async def __aenter__(self) -> 'FileWriter':
        return self.start()

    async def __aexit__(self, exc_type, exc, tb):
        if exc is None:
            await self.close()
        else:
            await self.abort(exc)
        return False
