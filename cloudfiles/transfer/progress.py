"""
Transfer Progress

One ProgressTracker per transfer call. Completion callbacks add the bytes
of each finished range; observers (the CLI progress bar, callers polling
`get_complete_percent()`) read snapshots.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

logger = logging.getLogger(__name__)


def format_size(bytes_count: Union[int, float]) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time view of a tracker."""
    total_size: Optional[int]
    completed_size: int

    @property
    def percent(self) -> Optional[float]:
        """Completion as a percentage, or None while the total is unknown."""
        if self.total_size is None:
            return None
        if self.total_size == 0:
            return 100.0
        return self.completed_size * 100.0 / self.total_size


ProgressCallback = Callable[[ProgressSnapshot], None]


class ProgressTracker:
    """Counts completed bytes against an optional total."""

    def __init__(self, name: str = '', total_size: Optional[int] = None):
        self.name = name
        self._total_size: Optional[int] = None
        self._completed = 0
        self._subscribers: List[ProgressCallback] = []
        self.start_time = time.time()

        if total_size is not None:
            self.set_total_size(total_size)

    @property
    def total_size(self) -> Optional[int]:
        return self._total_size

    @property
    def completed_size(self) -> int:
        return self._completed

    def set_total_size(self, total_size: int):
        """Set the total. It may only be set once."""
        if total_size < 0:
            raise ValueError(f"total_size must not be negative, got {total_size}")
        if self._total_size is not None:
            if self._total_size != total_size:
                raise ValueError(
                    f"total_size already set to {self._total_size}, got {total_size}"
                )
            return
        self._total_size = total_size
        self._completed = min(self._completed, total_size)
        self._notify()

    def increment(self, n: int):
        """Record `n` more completed bytes."""
        if n < 0:
            raise ValueError(f"Progress increment must not be negative, got {n}")
        completed = self._completed + n
        if self._total_size is not None:
            completed = min(completed, self._total_size)
        self._completed = completed
        self._notify()

    def subscribe(self, callback: ProgressCallback):
        """Call `callback(snapshot)` after every change."""
        self._subscribers.append(callback)

    def _notify(self):
        if not self._subscribers:
            return
        snapshot = self.snapshot()
        for callback in self._subscribers:
            try:
                callback(snapshot)
            except Exception as e:
                logger.warning(f"Progress subscriber failed: {e}")

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(total_size=self._total_size, completed_size=self._completed)

    def get_total_size(self, human_readable: bool = False):
        if human_readable and self._total_size is not None:
            return format_size(self._total_size)
        return self._total_size

    def get_complete_size(self, human_readable: bool = False):
        if human_readable:
            return format_size(self._completed)
        return self._completed

    def get_complete_percent(self) -> Optional[float]:
        return self.snapshot().percent

    @property
    def elapsed_seconds(self) -> float:
        """Time elapsed since start."""
        return time.time() - self.start_time

    def get_average_speed(self, human_readable: bool = False):
        """Bytes per second since the tracker was created."""
        elapsed = self.elapsed_seconds
        speed = self._completed / elapsed if elapsed > 0 else 0.0
        if human_readable:
            return f"{format_size(speed)}/s"
        return speed

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'name': self.name,
            'total_size': self._total_size,
            'completed_size': self._completed,
            'percent': self.get_complete_percent(),
            'speed_bytes_per_sec': self.get_average_speed(),
            'elapsed_seconds': self.elapsed_seconds,
        }
