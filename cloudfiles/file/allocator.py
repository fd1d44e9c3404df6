"""
Range Buffer Allocator

A small pool of fixed-size buffers, one per range that may be in flight.
Chunk sources read into these buffers and the uploader releases each one
when its range-write finishes. When every buffer is out, the next read
waits: this is what keeps a fast disk from running ahead of a slow network.
"""

import asyncio
import collections
import logging
from typing import Deque, List, Optional

from ..errors import ValidationError

logger = logging.getLogger(__name__)


class RangeAllocator:
    """
    Hands out reusable bytearrays of `buffer_size` bytes.

    At most `max_buffers` ever exist. Buffers are created lazily, so a
    transfer of two small chunks never allocates more than two.
    """

    def __init__(self, buffer_size: int, max_buffers: int = 1):
        if buffer_size < 1:
            raise ValueError(f"buffer_size must be positive, got {buffer_size}")
        if max_buffers < 1:
            raise ValueError(f"max_buffers must be at least 1, got {max_buffers}")

        self.buffer_size = buffer_size
        self.max_buffers = max_buffers

        self._free: List[bytearray] = []
        self._waiters: Deque[asyncio.Future] = collections.deque()
        self._created = 0
        self._in_use = 0

    @property
    def created(self) -> int:
        return self._created

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def available(self) -> int:
        """Buffers that could be handed out right now without waiting."""
        return len(self._free) + (self.max_buffers - self._created)

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self, size: Optional[int] = None) -> bytearray:
        """
        Get a buffer, waiting for a release if the pool is exhausted.

        Args:
            size: Bytes the caller intends to use. Must fit in one buffer.
        """
        if size is not None and size > self.buffer_size:
            raise ValidationError(
                f"Requested {size} bytes from an allocator of {self.buffer_size}-byte buffers"
            )

        if self._free:
            buffer = self._free.pop()
        elif self._created < self.max_buffers:
            buffer = bytearray(self.buffer_size)
            self._created += 1
        else:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            logger.debug(f"All {self.max_buffers} buffers in use, waiting for a release")
            try:
                buffer = await waiter
            except asyncio.CancelledError:
                # A release may have handed us a buffer just before the cancel
                if waiter.done() and not waiter.cancelled():
                    self._in_use += 1
                    self.release(waiter.result())
                raise

        self._in_use += 1
        return buffer

    def release(self, buffer: bytearray) -> None:
        """Return a buffer. Wakes the oldest waiter, if any."""
        if len(buffer) != self.buffer_size:
            raise ValueError(
                f"Released a {len(buffer)}-byte buffer to an allocator of "
                f"{self.buffer_size}-byte buffers"
            )

        self._in_use -= 1

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(buffer)
                return

        self._free.append(buffer)
