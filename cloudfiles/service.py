"""
File Service

High-level transfer calls. Each call snapshots its TransferOptions, opens a
chunk source or sink, and runs one FileUploader or FileDownloader.

Usage:
    async with FileService.from_config(load_config()) as service:
        await service.upload_file('share', 'dir', 'report.pdf', Path('report.pdf'))
        data = await service.download_bytes('share', 'dir', 'report.pdf')
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional, Union

import pydantic

from .config import Config
from .errors import ProducerError, ValidationError
from .file.allocator import RangeAllocator
from .file.chunker import BufferChunkSource, FileChunkSource, StreamChunkSource, compute_md5
from .rest.client import FileServiceClient
from .rest.models import FileProperties, FileReference
from .rest.protocol import MAX_RANGE_SIZE, RangeStore
from .transfer.downloader import BytesSink, DownloadSink, FileDownloader, FileSink, StreamSink
from .transfer.options import TransferOptions
from .transfer.progress import ProgressTracker
from .transfer.session import CompletionCallback, Transfer, TransferResult
from .transfer.uploader import FileUploader, FileWriter

logger = logging.getLogger(__name__)


def make_reference(share: str, directory: Optional[str], name: str) -> FileReference:
    try:
        return FileReference(share=share, directory=directory or '', name=name)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid file reference {share}/{directory or ''}/{name}: {e}") from e


class FileService:
    """
    Uploads and downloads files on a share.

    Args:
        store: Remote call primitives (normally a FileServiceClient)
        options: Defaults for every call; keyword arguments override them
    """

    def __init__(self, store: RangeStore, options: Optional[TransferOptions] = None):
        self.store = store
        self.default_options = options or TransferOptions()

    @classmethod
    def from_config(cls, config: Config) -> 'FileService':
        client = FileServiceClient(
            config.account_url,
            sas_token=config.sas_token,
            timeout=config.request_timeout,
        )
        return cls(client, options=config.transfer_options())

    async def close(self):
        close = getattr(self.store, 'close', None)
        if close is not None:
            await close()

    async def __aenter__(self) -> 'FileService':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _options(self, **overrides) -> TransferOptions:
        return self.default_options.with_changes(**overrides).validate()

    @staticmethod
    def _allocator(options: TransferOptions) -> RangeAllocator:
        # One buffer per in-flight range plus the one being filled
        return RangeAllocator(options.chunk_size, options.parallel_operation_thread_count + 1)

    # Uploads

    async def upload_bytes(self, share: str, directory: Optional[str], name: str,
                           data: Union[str, bytes, bytearray, memoryview],
                           content_md5: Optional[str] = None,
                           progress: Optional[ProgressTracker] = None,
                           **options) -> TransferResult:
        """Upload text (encoded as UTF-8) or bytes as a new file."""
        ref = make_reference(share, directory, name)
        if isinstance(data, str):
            data = data.encode('utf-8')
        opts = self._options(**options)
        source = BufferChunkSource(data, opts.chunk_size, self._allocator(opts),
                                   calc_content_md5=opts.store_content_md5)
        uploader = FileUploader(self.store, ref, source, opts,
                                progress=progress, content_md5=content_md5)
        return await uploader.run()

    async def upload_file(self, share: str, directory: Optional[str], name: str,
                          local_path: Union[str, Path],
                          content_md5: Optional[str] = None,
                          progress: Optional[ProgressTracker] = None,
                          **options) -> TransferResult:
        """Upload a local file. All-zero ranges are not sent."""
        ref = make_reference(share, directory, name)
        opts = self._options(**options)
        try:
            source = FileChunkSource(Path(local_path), opts.chunk_size, self._allocator(opts),
                                     calc_content_md5=opts.store_content_md5)
        except OSError as e:
            raise ProducerError(f"Cannot read {local_path}: {e}") from e
        uploader = FileUploader(self.store, ref, source, opts,
                                progress=progress, content_md5=content_md5)
        return await uploader.run()

    async def upload_stream(self, share: str, directory: Optional[str], name: str,
                            stream: Any, length: int,
                            content_md5: Optional[str] = None,
                            progress: Optional[ProgressTracker] = None,
                            **options) -> TransferResult:
        """
        Upload `length` bytes read from `stream`.

        `stream.read(n)` may be sync or async. The stream must produce
        exactly `length` bytes.
        """
        ref = make_reference(share, directory, name)
        if length is None or length < 0:
            raise ValidationError(f"upload_stream needs a non-negative length, got {length}")
        opts = self._options(**options)
        source = StreamChunkSource(opts.chunk_size, self._allocator(opts),
                                   calc_content_md5=opts.store_content_md5,
                                   total_size=length)
        uploader = FileUploader(self.store, ref, source, opts, create_size=length,
                                progress=progress, content_md5=content_md5)

        pump = asyncio.get_running_loop().create_task(source.pump(stream))
        try:
            return await uploader.run()
        finally:
            if not pump.done():
                source.discard()
                pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)

    def open_write_stream(self, share: str, directory: Optional[str], name: str,
                          length: Optional[int] = None,
                          content_md5: Optional[str] = None,
                          progress: Optional[ProgressTracker] = None,
                          **options) -> FileWriter:
        """
        Open a writable stream to a file.

        With `length` the file is created at that size and exactly that many
        bytes must be written. Without it, the file must already exist and
        written data replaces its content from offset 0.
        """
        ref = make_reference(share, directory, name)
        if length is not None and length < 0:
            raise ValidationError(f"length must not be negative, got {length}")
        opts = self._options(**options)
        source = StreamChunkSource(opts.chunk_size, self._allocator(opts),
                                   calc_content_md5=opts.store_content_md5,
                                   total_size=length)
        uploader = FileUploader(self.store, ref, source, opts, create_size=length,
                                progress=progress, content_md5=content_md5)
        return FileWriter(uploader)

    async def upload_range(self, share: str, directory: Optional[str], name: str,
                           data: Union[bytes, bytearray, memoryview], offset: int,
                           use_transactional_md5: Optional[bool] = None) -> FileProperties:
        """Write one range (at most 4 MiB) of an existing file."""
        ref = make_reference(share, directory, name)
        if offset < 0:
            raise ValidationError(f"offset must not be negative, got {offset}")
        if not data:
            raise ValidationError('Cannot write an empty range')
        if len(data) > MAX_RANGE_SIZE:
            raise ValidationError(
                f"Range of {len(data)} bytes exceeds the {MAX_RANGE_SIZE}-byte range-write limit"
            )
        if use_transactional_md5 is None:
            use_transactional_md5 = self.default_options.use_transactional_md5
        content_md5 = compute_md5(data) if use_transactional_md5 else None
        return await self.store.put_range(ref, offset, data, content_md5=content_md5)

    def begin_upload_file(self, share: str, directory: Optional[str], name: str,
                          local_path: Union[str, Path],
                          callback: Optional[CompletionCallback] = None,
                          progress: Optional[ProgressTracker] = None,
                          **options) -> Transfer:
        """Start `upload_file` as a task. Must be called with a running loop."""
        progress = progress or ProgressTracker(name=f"{share}/{directory or ''}/{name}")
        coro = self.upload_file(share, directory, name, local_path, progress=progress, **options)
        return Transfer(coro, progress, callback)

    # Downloads

    async def _download(self, share: str, directory: Optional[str], name: str,
                        sink: DownloadSink, range_start: Optional[int],
                        range_end: Optional[int], progress: Optional[ProgressTracker],
                        options: dict) -> TransferResult:
        ref = make_reference(share, directory, name)
        opts = self._options(**options)
        downloader = FileDownloader(self.store, ref, sink, opts,
                                    range_start=range_start, range_end=range_end,
                                    progress=progress)
        return await downloader.run()

    async def download_bytes(self, share: str, directory: Optional[str], name: str,
                             range_start: Optional[int] = None, range_end: Optional[int] = None,
                             progress: Optional[ProgressTracker] = None,
                             **options) -> bytes:
        """Download a file, or the inclusive range [range_start, range_end], into memory."""
        result = await self._download(share, directory, name, BytesSink(),
                                      range_start, range_end, progress, options)
        return result.content

    async def download_text(self, share: str, directory: Optional[str], name: str,
                            encoding: str = 'utf-8',
                            range_start: Optional[int] = None, range_end: Optional[int] = None,
                            progress: Optional[ProgressTracker] = None,
                            **options) -> str:
        data = await self.download_bytes(share, directory, name, range_start, range_end,
                                         progress, **options)
        return data.decode(encoding)

    async def download_to_file(self, share: str, directory: Optional[str], name: str,
                               local_path: Union[str, Path],
                               range_start: Optional[int] = None, range_end: Optional[int] = None,
                               progress: Optional[ProgressTracker] = None,
                               **options) -> TransferResult:
        """Download to a local file. A failed download leaves no file behind."""
        return await self._download(share, directory, name, FileSink(Path(local_path)),
                                    range_start, range_end, progress, options)

    async def download_to_stream(self, share: str, directory: Optional[str], name: str,
                                 stream: Any,
                                 range_start: Optional[int] = None, range_end: Optional[int] = None,
                                 progress: Optional[ProgressTracker] = None,
                                 **options) -> TransferResult:
        """Download into a writable stream. `stream.write` may be sync or async."""
        return await self._download(share, directory, name, StreamSink(stream),
                                    range_start, range_end, progress, options)

    def begin_download_to_file(self, share: str, directory: Optional[str], name: str,
                               local_path: Union[str, Path],
                               callback: Optional[CompletionCallback] = None,
                               range_start: Optional[int] = None, range_end: Optional[int] = None,
                               progress: Optional[ProgressTracker] = None,
                               **options) -> Transfer:
        """Start `download_to_file` as a task. Must be called with a running loop."""
        progress = progress or ProgressTracker(name=f"{share}/{directory or ''}/{name}")
        coro = self.download_to_file(share, directory, name, local_path,
                                     range_start=range_start, range_end=range_end,
                                     progress=progress, **options)
        return Transfer(coro, progress, callback)

    # Properties

    async def get_file_properties(self, share: str, directory: Optional[str],
                                  name: str) -> FileProperties:
        return await self.store.get_properties(make_reference(share, directory, name))
