"""
REST Module - Service Models and Client

The remote call primitives the transfer engine drives.
"""

from .models import ContentSettings, FileProperties, FileReference, ServiceResponse
from .protocol import MAX_RANGE_GET_SIZE_WITH_MD5, MAX_RANGE_SIZE, RangeStore
from .client import FileServiceClient

__all__ = [
    'ContentSettings',
    'FileProperties',
    'FileReference',
    'ServiceResponse',
    'RangeStore',
    'MAX_RANGE_SIZE',
    'MAX_RANGE_GET_SIZE_WITH_MD5',
    'FileServiceClient',
]
