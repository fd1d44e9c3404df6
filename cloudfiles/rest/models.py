"""
Service Models

Pydantic models for the pieces of the file service the transfer engine
talks about: which file, which content headers, and what came back.
"""

from typing import Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


METADATA_PREFIX = 'x-ms-meta-'

# ContentSettings field -> request header
_SETTINGS_HEADERS = {
    'content_type': 'x-ms-content-type',
    'content_encoding': 'x-ms-content-encoding',
    'content_language': 'x-ms-content-language',
    'cache_control': 'x-ms-cache-control',
    'content_disposition': 'x-ms-content-disposition',
    'content_md5': 'x-ms-content-md5',
}


class FileReference(BaseModel):
    """Identifies one file: share, directory ('' for the root) and name."""
    model_config = ConfigDict(frozen=True)

    share: str
    directory: str = ''
    name: str

    @field_validator('share', 'name')
    @classmethod
    def _not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError('must not be empty')
        return value

    @field_validator('name')
    @classmethod
    def _no_edge_delimiter(cls, value: str) -> str:
        if value.startswith('/') or value.endswith('/'):
            raise ValueError("file names may not start or end with '/'")
        return value

    @property
    def path(self) -> str:
        """Resource path below the account, e.g. ``share/dir/file.txt``."""
        parts = [self.share, self.directory.strip('/'), self.name]
        return '/'.join(p for p in parts if p)

    def __str__(self) -> str:
        return self.path


class ContentSettings(BaseModel):
    """Content headers stored with a file."""
    model_config = ConfigDict(frozen=True)

    content_type: Optional[str] = None
    content_encoding: Optional[str] = None
    content_language: Optional[str] = None
    cache_control: Optional[str] = None
    content_disposition: Optional[str] = None
    content_md5: Optional[str] = None

    def to_headers(self) -> Dict[str, str]:
        headers = {}
        for field_name, header in _SETTINGS_HEADERS.items():
            value = getattr(self, field_name)
            if value is not None:
                headers[header] = value
        return headers


class ServiceResponse(BaseModel):
    """The raw response of one service call."""

    status: int
    headers: Dict[str, str] = Field(default_factory=dict)

    @property
    def request_id(self) -> Optional[str]:
        return self.headers.get('x-ms-request-id')


class FileProperties(BaseModel):
    """File properties as reported by the service."""

    share: str
    directory: str = ''
    name: str
    content_length: Optional[int] = None
    content_md5: Optional[str] = None
    content_type: Optional[str] = None
    content_encoding: Optional[str] = None
    content_language: Optional[str] = None
    cache_control: Optional[str] = None
    content_disposition: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    server_encrypted: Optional[bool] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    response: Optional[ServiceResponse] = Field(default=None, exclude=True, repr=False)

    @classmethod
    def from_headers(cls, ref: FileReference, headers: Mapping[str, str],
                     response: Optional[ServiceResponse] = None,
                     length_from_body: bool = False) -> 'FileProperties':
        """
        Build properties from response headers.

        The file length comes from ``Content-Range`` when the response is a
        ranged read. ``Content-Length`` only describes the file when
        ``length_from_body`` is set (HEAD and full GET responses).
        """
        lowered = {k.lower(): v for k, v in headers.items()}

        content_length = None
        content_range = lowered.get('content-range')
        if content_range and '/' in content_range:
            total = content_range.rsplit('/', 1)[1]
            if total.isdigit():
                content_length = int(total)
        elif length_from_body and 'content-length' in lowered:
            content_length = int(lowered['content-length'])

        encrypted = lowered.get('x-ms-server-encrypted',
                                lowered.get('x-ms-request-server-encrypted'))

        return cls(
            share=ref.share,
            directory=ref.directory,
            name=ref.name,
            content_length=content_length,
            content_md5=lowered.get('content-md5'),
            content_type=lowered.get('content-type'),
            content_encoding=lowered.get('content-encoding'),
            content_language=lowered.get('content-language'),
            cache_control=lowered.get('cache-control'),
            content_disposition=lowered.get('content-disposition'),
            etag=lowered.get('etag'),
            last_modified=lowered.get('last-modified'),
            server_encrypted=None if encrypted is None else encrypted.lower() == 'true',
            metadata={
                k[len(METADATA_PREFIX):]: v
                for k, v in lowered.items()
                if k.startswith(METADATA_PREFIX)
            },
            response=response,
        )
