"""
File Service REST Client

Implements RangeStore over aiohttp against a file endpoint such as
``https://account.file.core.windows.net``. Requests are authorised with a
SAS token appended to the query string; request signing is not supported.
"""

import asyncio
import logging
from typing import Dict, Optional, Tuple
from urllib.parse import parse_qsl, quote

from aiohttp import ClientError, ClientSession, ClientTimeout

from ..errors import TransportError, ValidationError
from .models import METADATA_PREFIX, ContentSettings, FileProperties, FileReference, ServiceResponse
from .protocol import MAX_RANGE_GET_SIZE_WITH_MD5, MAX_RANGE_SIZE, BytesLike

logger = logging.getLogger(__name__)

SERVICE_VERSION = '2014-02-14'

# Longest piece of an error body kept in an exception message
MAX_ERROR_DETAIL = 500


class FileServiceClient:
    """
    Async client for the range operations of the file service.

    Args:
        account_url: Service endpoint, e.g. https://account.file.core.windows.net
        sas_token: Shared access signature query string (with or without '?')
        timeout: Total timeout per request in seconds
        session: Existing aiohttp session to use (not closed by this client)
    """

    def __init__(self, account_url: str, sas_token: Optional[str] = None,
                 timeout: float = 30.0, session: Optional[ClientSession] = None):
        if not account_url:
            raise ValidationError('account_url is required')
        self.account_url = account_url.rstrip('/')
        self.sas_params: Dict[str, str] = dict(parse_qsl((sas_token or '').lstrip('?')))
        self.timeout = timeout

        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> 'FileServiceClient':
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=ClientTimeout(total=self.timeout))
            self._owns_session = True
            logger.debug(f"Created HTTP session for {self.account_url}")
        return self._session

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def url_for(self, ref: FileReference) -> str:
        return f"{self.account_url}/{quote(ref.path)}"

    async def _request(self, method: str, ref: FileReference,
                       params: Optional[Dict[str, str]] = None,
                       headers: Optional[Dict[str, str]] = None,
                       data: Optional[BytesLike] = None,
                       read_body: bool = False) -> Tuple[bytes, ServiceResponse]:
        """Send one request. Raises TransportError for anything but 2xx."""
        session = await self._ensure_session()

        query = dict(self.sas_params)
        query.update(params or {})
        request_headers = {'x-ms-version': SERVICE_VERSION}
        request_headers.update(headers or {})
        url = self.url_for(ref)

        logger.debug(f"{method} {ref.path} {params or ''}")
        try:
            async with session.request(method, url, params=query,
                                       headers=request_headers, data=data) as resp:
                response = ServiceResponse(status=resp.status, headers=dict(resp.headers))
                if resp.status >= 300:
                    detail = ''
                    if method != 'HEAD':
                        detail = (await resp.text(errors='replace'))[:MAX_ERROR_DETAIL]
                    error_code = resp.headers.get('x-ms-error-code')
                    logger.debug(f"{method} {ref.path} failed: {resp.status} {error_code}")
                    raise TransportError.from_status(
                        resp.status,
                        error_code=error_code,
                        detail=f"{method} {ref.path} failed: {detail or resp.reason}",
                        response=response,
                    )
                body = await resp.read() if read_body else b''
                return body, response
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"{method} {ref.path} timed out after {self.timeout}s", retryable=True,
            ) from e
        except ClientError as e:
            raise TransportError(f"{method} {ref.path} failed: {e}", retryable=True) from e

    async def create_file(self, ref: FileReference, size: int,
                          settings: Optional[ContentSettings] = None,
                          metadata: Optional[Dict[str, str]] = None) -> FileProperties:
        if size < 0:
            raise ValidationError(f"File size must not be negative, got {size}")
        headers = {
            'x-ms-type': 'file',
            'x-ms-content-length': str(size),
        }
        if settings is not None:
            headers.update(settings.to_headers())
        for key, value in (metadata or {}).items():
            headers[f"{METADATA_PREFIX}{key}"] = value

        _, response = await self._request('PUT', ref, headers=headers)
        return FileProperties.from_headers(ref, response.headers, response=response)

    async def put_range(self, ref: FileReference, offset: int, data: BytesLike,
                        content_md5: Optional[str] = None) -> FileProperties:
        length = len(data)
        if length == 0:
            raise ValidationError('Cannot write an empty range')
        if length > MAX_RANGE_SIZE:
            raise ValidationError(
                f"Range of {length} bytes exceeds the {MAX_RANGE_SIZE}-byte range-write limit"
            )
        headers = {
            'x-ms-write': 'update',
            'x-ms-range': f"bytes={offset}-{offset + length - 1}",
        }
        if content_md5:
            headers['Content-MD5'] = content_md5

        _, response = await self._request('PUT', ref, params={'comp': 'range'},
                                          headers=headers, data=data)
        return FileProperties.from_headers(ref, response.headers, response=response)

    async def get_range(self, ref: FileReference, start: int, end: int,
                        validate_md5: bool = False) -> Tuple[bytes, FileProperties]:
        if start < 0 or end < start:
            raise ValidationError(f"Invalid range {start}-{end}")
        headers = {'x-ms-range': f"bytes={start}-{end}"}
        if validate_md5:
            if end - start + 1 > MAX_RANGE_GET_SIZE_WITH_MD5:
                raise ValidationError(
                    f"Ranged MD5 is limited to {MAX_RANGE_GET_SIZE_WITH_MD5} bytes, "
                    f"requested {end - start + 1}"
                )
            headers['x-ms-range-get-content-md5'] = 'true'

        body, response = await self._request('GET', ref, headers=headers, read_body=True)
        return body, FileProperties.from_headers(ref, response.headers, response=response)

    async def get_properties(self, ref: FileReference) -> FileProperties:
        _, response = await self._request('HEAD', ref)
        return FileProperties.from_headers(ref, response.headers, response=response,
                                           length_from_body=True)

    async def set_properties(self, ref: FileReference,
                             settings: ContentSettings) -> FileProperties:
        _, response = await self._request('PUT', ref, params={'comp': 'properties'},
                                          headers=settings.to_headers())
        return FileProperties.from_headers(ref, response.headers, response=response)
