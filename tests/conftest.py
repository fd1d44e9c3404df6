"""Shared fixtures: an in-memory file store standing in for the service."""

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from cloudfiles.errors import TransportError
from cloudfiles.file.chunker import FileChunkSource, compute_md5
from cloudfiles.rest.models import ContentSettings, FileProperties, FileReference, ServiceResponse
from cloudfiles.service import FileService
from cloudfiles.transfer.options import TransferOptions


class InMemoryFileStore:
    """
    RangeStore backed by dicts.

    Records every call, tracks how many range calls overlap, and can be
    told to fail or corrupt specific ranges.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.files: Dict[str, bytearray] = {}
        self.settings: Dict[str, ContentSettings] = {}
        self.metadata: Dict[str, Dict[str, str]] = {}

        self.calls: List[Tuple] = []
        self.put_ranges: List[Tuple[int, int, Optional[str]]] = []
        self.in_flight = 0
        self.max_in_flight = 0

        self.fail_create: Optional[Exception] = None
        self.fail_put_at: Dict[int, Exception] = {}
        self.fail_get_at: Dict[int, Exception] = {}
        self.truncate_get_at: set = set()
        self.bad_range_md5_at: set = set()
        self.omit_range_md5 = False

    # Helpers

    def seed(self, ref: FileReference, data: bytes, content_md5: Optional[str] = None,
             content_type: Optional[str] = None):
        self.files[ref.path] = bytearray(data)
        self.settings[ref.path] = ContentSettings(content_md5=content_md5, content_type=content_type)
        self.metadata[ref.path] = {}

    def content(self, ref: FileReference) -> bytes:
        return bytes(self.files[ref.path])

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]

    def _properties(self, ref: FileReference, length: Optional[int] = None) -> FileProperties:
        settings = self.settings.get(ref.path, ContentSettings())
        return FileProperties(
            share=ref.share,
            directory=ref.directory,
            name=ref.name,
            content_length=len(self.files[ref.path]) if length is None else length,
            content_md5=settings.content_md5,
            content_type=settings.content_type,
            metadata=dict(self.metadata.get(ref.path, {})),
            response=ServiceResponse(status=200, headers={'x-ms-request-id': 'req-1'}),
        )

    def _missing(self, ref: FileReference) -> TransportError:
        return TransportError.from_status(404, error_code='ResourceNotFound',
                                          detail=f"{ref.path} not found")

    async def _enter(self):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)

    def _exit(self):
        self.in_flight -= 1

    # RangeStore

    async def create_file(self, ref, size, settings=None, metadata=None):
        self.calls.append(('create_file', ref.path, size))
        if self.fail_create is not None:
            raise self.fail_create
        self.files[ref.path] = bytearray(size)
        self.settings[ref.path] = settings or ContentSettings()
        self.metadata[ref.path] = dict(metadata or {})
        return self._properties(ref)

    async def put_range(self, ref, offset, data, content_md5=None):
        data = bytes(data)
        self.calls.append(('put_range', offset, len(data)))
        await self._enter()
        try:
            if offset in self.fail_put_at:
                raise self.fail_put_at[offset]
            if ref.path not in self.files:
                raise self._missing(ref)
            if content_md5 is not None and content_md5 != compute_md5(data):
                raise TransportError.from_status(400, error_code='Md5Mismatch')
            target = self.files[ref.path]
            if offset + len(data) > len(target):
                raise TransportError.from_status(416, error_code='InvalidRange')
            target[offset:offset + len(data)] = data
            self.put_ranges.append((offset, len(data), content_md5))
            return self._properties(ref)
        finally:
            self._exit()

    async def get_range(self, ref, start, end, validate_md5=False):
        self.calls.append(('get_range', start, end))
        await self._enter()
        try:
            if start in self.fail_get_at:
                raise self.fail_get_at[start]
            if ref.path not in self.files:
                raise self._missing(ref)
            data = bytes(self.files[ref.path][start:end + 1])
            if start in self.truncate_get_at:
                data = data[:-1]
            props = self._properties(ref)
            range_md5 = None
            if validate_md5 and not self.omit_range_md5:
                range_md5 = compute_md5(b'corrupted' if start in self.bad_range_md5_at else data)
            return data, props.model_copy(update={'content_md5': range_md5})
        finally:
            self._exit()

    async def get_properties(self, ref):
        self.calls.append(('get_properties', ref.path))
        if ref.path not in self.files:
            raise self._missing(ref)
        return self._properties(ref)

    async def set_properties(self, ref, settings):
        self.calls.append(('set_properties', ref.path, settings.content_md5))
        if ref.path not in self.files:
            raise self._missing(ref)
        self.settings[ref.path] = settings
        return self._properties(ref)


class FailingFileSource(FileChunkSource):
    """FileChunkSource whose read at `fail_at` raises. Records every read offset."""

    def __init__(self, path, chunk_size, allocator, fail_at: int, **kwargs):
        super().__init__(path, chunk_size, allocator, **kwargs)
        self.fail_at = fail_at
        self.reads: List[int] = []

    async def _read_chunk(self):
        self.reads.append(self._offset)
        if self._offset == self.fail_at:
            raise OSError(f"read failed at {self._offset}")
        return await super()._read_chunk()


@pytest.fixture
def store():
    return InMemoryFileStore()


@pytest.fixture
def ref():
    return FileReference(share='share', directory='dir', name='file.bin')


@pytest.fixture
def service(store):
    return FileService(store, options=TransferOptions(chunk_size=4))
