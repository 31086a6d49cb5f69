"""
Dataclass for tracking resolution session statistics.
"""

import threading
import time
from dataclasses import dataclass, field


@dataclass
class ResolveStats:
    """Tracks statistics for a resolution session."""

    files_up_to_date: int = 0
    files_fetched: int = 0
    files_failed: int = 0
    total_size_fetched: int = 0
    entries_swept: int = 0
    start_time: float = field(default_factory=time.monotonic, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def files_resolved(self) -> int:
        return self.files_up_to_date + self.files_fetched

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.start_time

    def record_hit(self) -> None:
        with self._lock:
            self.files_up_to_date += 1

    def record_fetch(self, size: int) -> None:
        with self._lock:
            self.files_fetched += 1
            self.total_size_fetched += size

    def record_failure(self) -> None:
        with self._lock:
            self.files_failed += 1

    def as_dict(self) -> dict[str, float | int]:
        """Returns the counters in a JSON-serializable form."""
        return {
            "files_up_to_date": self.files_up_to_date,
            "files_fetched": self.files_fetched,
            "files_failed": self.files_failed,
            "total_size_fetched": self.total_size_fetched,
            "entries_swept": self.entries_swept,
            "duration_seconds": round(self.elapsed, 2),
        }
