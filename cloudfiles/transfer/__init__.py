"""
Transfer Module - Chunked Upload/Download

Bounded-concurrency range transfers with progress and MD5 validation.
"""

from .options import TransferOptions, DEFAULT_CHUNK_SIZE
from .progress import ProgressTracker, ProgressSnapshot, format_size
from .batch import BatchExecutor, UnitOperation, OperationState
from .session import Transfer, TransferResult, TransferSession, TransferState
from .uploader import FileUploader, FileWriter
from .downloader import BytesSink, DownloadSink, FileDownloader, FileSink, StreamSink

__all__ = [
    'TransferOptions',
    'DEFAULT_CHUNK_SIZE',
    'ProgressTracker',
    'ProgressSnapshot',
    'format_size',
    'BatchExecutor',
    'UnitOperation',
    'OperationState',
    'Transfer',
    'TransferResult',
    'TransferSession',
    'TransferState',
    'FileUploader',
    'FileWriter',
    'FileDownloader',
    'DownloadSink',
    'BytesSink',
    'StreamSink',
    'FileSink',
]
