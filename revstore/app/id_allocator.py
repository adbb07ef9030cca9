"""Vector id allocation."""

from __future__ import annotations

import threading
from pathlib import Path

from revstore.storage.jsonl import count_lines


class IdAllocator:
    """Hands out contiguous, non-overlapping vector id ranges.

    The counter is seeded from the number of entries in the vector map log,
    which is the record of how many vectors have been committed.
    """

    def __init__(self, start: int = 0) -> None:
        if start < 0:
            raise ValueError(f"start must be non-negative; got {start}")
        self._next = int(start)
        self._lock = threading.Lock()

    @classmethod
    def from_map_log(cls, map_path: Path) -> IdAllocator:
        """Seed an allocator with the line count of ``map_path``."""
        return cls(count_lines(map_path))

    def reserve(self, n: int = 1) -> int:
        """Reserve ``n`` ids and return the first one."""
        if n < 0:
            raise ValueError(f"n must be non-negative; got {n}")
        with self._lock:
            start = self._next
            self._next += n
            return start

    def release(self, start: int, n: int) -> bool:
        """Return the range ``[start, start + n)`` if it was the latest reservation.

        Used when the vectors for a reservation were never committed. Ranges
        that other callers have already reserved past are left alone.
        """
        with self._lock:
            if self._next != start + n:
                return False
            self._next = start
            return True

    def advance_to(self, value: int) -> None:
        """Move the counter forward to at least ``value``."""
        with self._lock:
            self._next = max(self._next, int(value))

    def peek(self) -> int:
        """Return the next id that would be handed out."""
        with self._lock:
            return self._next
