"""
File Module - Buffers and Chunk Sources

Splits local files, in-memory data and pushed streams into bounded ranges.
"""

from .allocator import RangeAllocator
from .chunker import (
    BufferChunkSource,
    Chunk,
    ChunkSource,
    FileChunkSource,
    StreamChunkSource,
    compute_md5,
)

__all__ = [
    'RangeAllocator',
    'Chunk',
    'ChunkSource',
    'FileChunkSource',
    'BufferChunkSource',
    'StreamChunkSource',
    'compute_md5',
]
