"""
Chunk Sources

Design Decision: Chunk Size
===========================

Options Considered:
| Size    | Pros                          | Cons                             |
|---------|-------------------------------|----------------------------------|
| 512KB   | Fine-grained progress         | 8x the requests of 4MB           |
| 1MB     | Moderate request count        | Still far below the range limit  |
| 4MB     | One range-write per chunk max | Peak memory = 4MB x parallelism  |

Decision: 4MB default (configurable, never above 4MB)
- The service caps a single range-write at 4MB
- Memory stays bounded: one pooled buffer per in-flight range

Chunking Strategy: Fixed-Size
- Offsets are computable (offset = index * chunk_size)
- Only the final chunk may be short

Three sources produce the same Chunk stream:
- FileChunkSource: random-access reads from a local file
- BufferChunkSource: slices of an in-memory bytes object
- StreamChunkSource: push-based data events re-framed into fixed windows
"""

import asyncio
import base64
import hashlib
import inspect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

import aiofiles

from .allocator import RangeAllocator

logger = logging.getLogger(__name__)

BytesLike = Union[bytes, bytearray, memoryview]

# Marks the end of a push-based stream
_END_OF_STREAM = object()


@dataclass
class Chunk:
    """A contiguous window of the source, backed by an allocator buffer."""
    offset: int
    length: int
    data: memoryview
    buffer: Optional[bytearray] = None

    @property
    def end(self) -> int:
        """Inclusive offset of the last byte, as sent in range headers."""
        return self.offset + self.length - 1

    def is_all_zero(self) -> bool:
        return self.data == bytes(self.length)

    def to_bytes(self) -> bytes:
        return self.data.tobytes()


def compute_md5(data: BytesLike) -> str:
    """Base64 MD5, the form used in Content-MD5 headers."""
    return base64.b64encode(hashlib.md5(data).digest()).decode('ascii')


class ChunkSource:
    """
    Produces Chunks in offset order until exhausted.

    Subclasses implement `_read_chunk()`. The base class keeps the running
    end-to-end MD5 and the terminal state.
    """

    # Whether the uploader may skip sending all-zero chunks from this source
    skips_zero_chunks = False

    def __init__(self, chunk_size: int, allocator: RangeAllocator,
                 calc_content_md5: bool = False):
        if chunk_size > allocator.buffer_size:
            raise ValueError(
                f"chunk_size {chunk_size} does not fit the allocator's "
                f"{allocator.buffer_size}-byte buffers"
            )
        self.chunk_size = chunk_size
        self.allocator = allocator
        self._md5 = hashlib.md5() if calc_content_md5 else None

        self._offset = 0
        self._finished = False
        self._failed = False

    @property
    def total_size(self) -> Optional[int]:
        """Bytes this source will produce, or None if unknown."""
        return None

    @property
    def bytes_read(self) -> int:
        return self._offset

    @property
    def finished(self) -> bool:
        return self._finished

    async def next(self) -> Optional[Chunk]:
        """
        Read the next chunk.

        Returns:
            The chunk, or None once the source is exhausted or has failed.
        """
        if self._finished:
            return None

        try:
            chunk = await self._read_chunk()
        except BaseException:
            self._finished = True
            self._failed = True
            raise

        if chunk is None:
            self._finished = True
            await self.close()
            return None

        if self._md5 is not None:
            self._md5.update(chunk.data)
        self._offset += chunk.length
        return chunk

    def __aiter__(self):
        return self

    async def __anext__(self) -> Chunk:
        chunk = await self.next()
        if chunk is None:
            raise StopAsyncIteration
        return chunk

    def content_md5(self) -> str:
        """Base64 MD5 of every byte produced. Only valid once exhausted."""
        if self._md5 is None:
            raise RuntimeError('Content MD5 was not requested for this source')
        if not self._finished or self._failed:
            raise RuntimeError('Content MD5 is only available after the source is exhausted')
        return base64.b64encode(self._md5.digest()).decode('ascii')

    async def close(self):
        """Release any underlying resources."""

    async def _read_chunk(self) -> Optional[Chunk]:
        raise NotImplementedError

    async def _fill(self, offset: int, length: int, reader) -> Optional[Chunk]:
        """Acquire a buffer and fill it through `reader(view) -> int`."""
        buffer = await self.allocator.acquire(length)
        view = memoryview(buffer)
        filled = 0
        try:
            while filled < length:
                n = await reader(view[filled:length])
                if not n:
                    break
                filled += n
        except BaseException:
            self.allocator.release(buffer)
            raise

        if filled == 0:
            self.allocator.release(buffer)
            return None
        return Chunk(offset=offset, length=filled, data=view[:filled], buffer=buffer)


class FileChunkSource(ChunkSource):
    """Reads a local file in fixed windows with positioned reads."""

    skips_zero_chunks = True

    def __init__(self, path: Path, chunk_size: int, allocator: RangeAllocator,
                 calc_content_md5: bool = False):
        super().__init__(chunk_size, allocator, calc_content_md5)
        self.path = Path(path)
        self._size = self.path.stat().st_size
        self._file = None

    @property
    def total_size(self) -> int:
        return self._size

    async def _read_chunk(self) -> Optional[Chunk]:
        remaining = self._size - self._offset
        if remaining <= 0:
            return None

        if self._file is None:
            self._file = await aiofiles.open(self.path, 'rb')

        await self._file.seek(self._offset)
        length = min(self.chunk_size, remaining)
        chunk = await self._fill(self._offset, length, self._file.readinto)
        if chunk is None or chunk.length < length:
            if chunk is not None:
                self.allocator.release(chunk.buffer)
            raise EOFError(
                f"{self.path} shrank while reading: expected {self._size} bytes, "
                f"got {self._offset + (chunk.length if chunk else 0)}"
            )
        return chunk

    async def close(self):
        if self._file is not None:
            await self._file.close()
            self._file = None


class BufferChunkSource(ChunkSource):
    """Slices an in-memory bytes-like object."""

    def __init__(self, data: BytesLike, chunk_size: int, allocator: RangeAllocator,
                 calc_content_md5: bool = False):
        super().__init__(chunk_size, allocator, calc_content_md5)
        self._data = memoryview(data).cast('B')

    @property
    def total_size(self) -> int:
        return len(self._data)

    async def _read_chunk(self) -> Optional[Chunk]:
        start = self._offset
        length = min(self.chunk_size, len(self._data) - start)
        if length <= 0:
            return None

        async def copy(view: memoryview) -> int:
            view[:length] = self._data[start:start + length]
            return length

        return await self._fill(start, length, copy)


class StreamChunkSource(ChunkSource):
    """
    Re-frames push-based data events into fixed-size chunks.

    Producers call `feed()` for each piece of data, then `end()` (or
    `fail()`). Pieces of any size are accepted; a chunk is emitted once a
    full window has accumulated, or at the end with whatever is left.
    """

    def __init__(self, chunk_size: int, allocator: RangeAllocator,
                 calc_content_md5: bool = False, total_size: Optional[int] = None,
                 max_pending_events: int = 16):
        super().__init__(chunk_size, allocator, calc_content_md5)
        self._declared_size = total_size
        self._events: asyncio.Queue = asyncio.Queue(maxsize=max_pending_events)
        self._pending: Optional[memoryview] = None
        self._ended = False
        self._input_closed = False

    @property
    def total_size(self) -> Optional[int]:
        return self._declared_size

    @property
    def input_closed(self) -> bool:
        """True once `end()` or `fail()` was called."""
        return self._input_closed

    async def feed(self, data: BytesLike):
        """Push one data event. Waits while too many events are queued."""
        if self._input_closed:
            raise RuntimeError('Cannot feed a stream that has ended')
        if data:
            # Copy: the caller may reuse its buffer as soon as we return
            await self._events.put(bytes(data))

    def end(self):
        """Signal that no more data will be fed."""
        if not self._input_closed:
            self._input_closed = True
            self._put_nowait_or_schedule(_END_OF_STREAM)

    def fail(self, error: BaseException):
        """Signal a read failure. The next `next()` raises it."""
        if not self._input_closed:
            self._input_closed = True
            self._put_nowait_or_schedule(error)

    def discard(self):
        """Stop accepting data and drop anything queued. Wakes blocked feeders."""
        self._input_closed = True
        while not self._events.empty():
            self._events.get_nowait()

    def _put_nowait_or_schedule(self, event: Any):
        try:
            self._events.put_nowait(event)
        except asyncio.QueueFull:
            asyncio.get_running_loop().create_task(self._events.put(event))

    async def pump(self, stream: Any, read_size: Optional[int] = None):
        """
        Feed everything readable from `stream` and end the source.

        `stream.read(n)` may be a plain method (files, BytesIO) or a
        coroutine (aiofiles, asyncio.StreamReader, aiohttp payloads).
        Read errors are routed to `fail()` rather than raised here.
        """
        read_size = read_size or self.chunk_size
        try:
            while True:
                data = stream.read(read_size)
                if inspect.isawaitable(data):
                    data = await data
                if not data:
                    break
                await self.feed(data)
        except asyncio.CancelledError:
            self.fail(asyncio.CancelledError())
            raise
        except Exception as e:
            logger.debug(f"Stream read failed: {e}")
            self.fail(e)
        else:
            self.end()

    async def _next_event(self) -> Optional[memoryview]:
        """Next piece of pushed data, or None at the end of the stream."""
        if self._pending is not None:
            pending, self._pending = self._pending, None
            return pending
        if self._ended:
            return None

        event = await self._events.get()
        if event is _END_OF_STREAM:
            self._ended = True
            return None
        if isinstance(event, BaseException):
            self._ended = True
            raise event
        return memoryview(event)

    async def _read_chunk(self) -> Optional[Chunk]:
        async def reframe(view: memoryview) -> int:
            piece = await self._next_event()
            if piece is None:
                return 0
            n = min(len(piece), len(view))
            view[:n] = piece[:n]
            if n < len(piece):
                self._pending = piece[n:]
            return n

        return await self._fill(self._offset, self.chunk_size, reframe)
