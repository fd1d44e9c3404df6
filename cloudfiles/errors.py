"""
Error Types

Every failure surfaced by the SDK is a StorageError. The subclasses say
where it came from, and `retryable` says whether repeating the same request
could succeed. Integrity, validation and producer errors never can.
"""

from typing import Optional, Any


# Status codes worth repeating the request for
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class StorageError(Exception):
    """Base class for all SDK errors."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None,
                 error_code: Optional[str] = None,
                 retryable: Optional[bool] = None,
                 response: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.response = response
        if retryable is not None:
            self.retryable = retryable

    def __str__(self) -> str:
        if self.status_code is not None:
            code = f" [{self.error_code}]" if self.error_code else ""
            return f"{self.message} (HTTP {self.status_code}{code})"
        return self.message


class ValidationError(StorageError, ValueError):
    """Bad arguments, sizes or ranges. Raised before any remote call."""

    retryable = False


class TransportError(StorageError):
    """Network failure or non-2xx response from the service."""

    @classmethod
    def from_status(cls, status_code: int, error_code: Optional[str] = None,
                    detail: str = '', response: Any = None) -> 'TransportError':
        message = detail or f"Request failed with status {status_code}"
        return cls(
            message,
            status_code=status_code,
            error_code=error_code,
            retryable=status_code in RETRYABLE_STATUS_CODES,
            response=response,
        )


class IntegrityError(StorageError):
    """Content MD5 or length mismatch. Repeating the read gives the same bytes."""

    retryable = False


class ProducerError(StorageError):
    """Local file or stream read failure while producing chunks."""

    retryable = False
