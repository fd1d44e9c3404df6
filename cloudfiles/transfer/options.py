"""
Transfer Options

Design Decision: Per-Call Configuration
=======================================

Options Considered:
1. One mutable options dict threaded through nested calls
   - Easy to extend
   - Inner calls can change what outer calls see
2. Frozen dataclass snapshotted at the start of each call
   - Nothing downstream can mutate it
   - Derived copies via dataclasses.replace()

Decision: Frozen dataclass
- A transfer reads its options once and they stay fixed until it reports
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Optional

from ..errors import ValidationError
from ..rest.models import ContentSettings
from ..rest.protocol import MAX_RANGE_GET_SIZE_WITH_MD5, MAX_RANGE_SIZE, MiB

DEFAULT_CHUNK_SIZE = 4 * MiB
DEFAULT_PARALLEL_OPERATION_THREAD_COUNT = 1


@dataclass(frozen=True)
class TransferOptions:
    """Settings for one upload or download call."""
    parallel_operation_thread_count: int = DEFAULT_PARALLEL_OPERATION_THREAD_COUNT
    chunk_size: int = DEFAULT_CHUNK_SIZE

    # Integrity
    store_content_md5: bool = False
    use_transactional_md5: bool = False
    disable_md5_validation: bool = False

    # Stored with the file on create and finalize
    content_settings: ContentSettings = field(default_factory=ContentSettings)
    metadata: Optional[Dict[str, str]] = None

    def validate(self) -> 'TransferOptions':
        """Raise ValidationError for settings no transfer can run with."""
        if self.parallel_operation_thread_count < 1:
            raise ValidationError(
                f"parallel_operation_thread_count must be at least 1, "
                f"got {self.parallel_operation_thread_count}"
            )
        if self.chunk_size < 1:
            raise ValidationError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.chunk_size > MAX_RANGE_SIZE:
            raise ValidationError(
                f"chunk_size {self.chunk_size} exceeds the range-write limit of "
                f"{MAX_RANGE_SIZE} bytes"
            )
        if self.use_transactional_md5 and self.chunk_size > MAX_RANGE_GET_SIZE_WITH_MD5:
            raise ValidationError(
                f"chunk_size {self.chunk_size} is too large for ranged MD5 reads "
                f"(limit {MAX_RANGE_GET_SIZE_WITH_MD5} bytes)"
            )
        return self

    def with_changes(self, **changes) -> 'TransferOptions':
        """Return a copy with `changes` applied. None values are ignored."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes) if changes else self
