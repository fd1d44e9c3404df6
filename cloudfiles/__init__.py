"""
cloudfiles - Chunked transfers for cloud file shares.
"""

from .config import Config, load_config
from .errors import (
    IntegrityError,
    ProducerError,
    StorageError,
    TransportError,
    ValidationError,
)
from .rest import ContentSettings, FileProperties, FileReference, FileServiceClient
from .service import FileService
from .transfer import ProgressTracker, Transfer, TransferOptions, TransferResult

__version__ = '0.1.0'

__all__ = [
    'Config',
    'load_config',
    'StorageError',
    'ValidationError',
    'TransportError',
    'IntegrityError',
    'ProducerError',
    'ContentSettings',
    'FileProperties',
    'FileReference',
    'FileServiceClient',
    'FileService',
    'ProgressTracker',
    'Transfer',
    'TransferOptions',
    'TransferResult',
]
