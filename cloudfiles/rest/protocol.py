"""
Remote Call Primitives

The transfer engine never builds requests itself. It drives an object
implementing RangeStore: the REST client in production, an in-memory
store in tests.
"""

from typing import Dict, Optional, Protocol, Tuple, Union, runtime_checkable

from .models import ContentSettings, FileProperties, FileReference


BytesLike = Union[bytes, bytearray, memoryview]

MiB = 1024 * 1024

# Largest body a single range-write accepts
MAX_RANGE_SIZE = 4 * MiB

# Largest range the service will hash for x-ms-range-get-content-md5
MAX_RANGE_GET_SIZE_WITH_MD5 = 4 * MiB


@runtime_checkable
class RangeStore(Protocol):
    """Everything a chunked transfer needs from the service."""

    async def create_file(self, ref: FileReference, size: int,
                          settings: Optional[ContentSettings] = None,
                          metadata: Optional[Dict[str, str]] = None) -> FileProperties:
        """Create (or replace) an empty file of `size` bytes."""
        ...

    async def put_range(self, ref: FileReference, offset: int, data: BytesLike,
                        content_md5: Optional[str] = None) -> FileProperties:
        """Write `data` at `offset`. At most 4 MiB per call."""
        ...

    async def get_range(self, ref: FileReference, start: int, end: int,
                        validate_md5: bool = False) -> Tuple[bytes, FileProperties]:
        """Read the inclusive byte range [start, end]."""
        ...

    async def get_properties(self, ref: FileReference) -> FileProperties:
        ...

    async def set_properties(self, ref: FileReference,
                             settings: ContentSettings) -> FileProperties:
        ...
