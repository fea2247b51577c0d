"""Position allocator: the single owner of the feed sequence counter.

Usage::

    allocator = PositionAllocator()
    allocator.allocate()   # 1
    allocator.allocate()   # 2

    # Resume after the highest position already handed out
    allocator = PositionAllocator(last=123)
    allocator.allocate()   # 124
"""

from __future__ import annotations

import threading

from httpfeed_core.entry import MAX_POSITION
from httpfeed_core.errors import AllocationExhausted


class PositionAllocator:
    """Hands out strictly increasing positions.

    Thread-safe: concurrent callers never observe the same value twice,
    and allocation order is the total order of the feed.
    """

    def __init__(self, last: int = 0, *, maximum: int = MAX_POSITION) -> None:
        if last > maximum:
            raise ValueError(f"last={last} exceeds maximum={maximum}")
        self._last = last
        self._maximum = maximum
        self._lock = threading.Lock()

    @property
    def last(self) -> int:
        """The most recently allocated position (or the starting point)."""
        return self._last

    def allocate(self) -> int:
        """Return the next position.

        Raises:
            AllocationExhausted: If the counter reached its maximum.
        """
        with self._lock:
            if self._last >= self._maximum:
                raise AllocationExhausted(
                    f"Position counter exhausted at {self._last} (maximum {self._maximum})"
                )
            self._last += 1
            return self._last
