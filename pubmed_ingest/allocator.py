"""Shared countdown that hands out job indices to workers."""

from __future__ import annotations

import threading


class JobAllocator:
    """Hand out each index in ``range(total_jobs)`` exactly once, highest first.

    The counter is decremented and read inside one critical section, so two
    concurrent ``claim`` calls never observe the same value.
    """

    def __init__(self, total_jobs: int) -> None:
        if total_jobs < 0:
            raise ValueError("total_jobs must be non-negative")
        self._remaining = total_jobs
        self._lock = threading.Lock()

    def claim(self) -> int | None:
        """Return the next job index, or ``None`` once every index is taken."""
        with self._lock:
            self._remaining -= 1
            value = self._remaining
        if value < 0:
            return None
        return value

    @property
    def remaining(self) -> int:
        """Number of indices not yet handed out."""
        with self._lock:
            return max(self._remaining, 0)
