"""
Thread-safe bounded FIFO for captured frames.

FrameQueue is the explicit channel between event-driven producers and a single
consumer loop. Unlike a ring buffer it never discards queued items: frame order
and delivery are part of the ack contract, so a full queue rejects the new item
and reports it to the caller instead.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Optional


class FrameQueueFull(Exception):
    """Raised by push() when the queue is at capacity."""


@dataclass
class FrameQueueStats:
    """
    Statistics for FrameQueue.

    Attributes:
        capacity: Maximum number of items the queue can hold
        count: Current number of items in the queue
        total_pushed: Items accepted since creation
        rejected_count: Items refused because the queue was full
    """
    capacity: int
    count: int
    total_pushed: int
    rejected_count: int


class FrameQueue:
    """
    Bounded, ordered, thread-safe queue.

    push() never blocks. pop() returns the oldest item and can optionally wait
    for one to arrive. All operations are O(1).

    Attributes:
        capacity: Maximum number of items the queue can hold
    """

    def __init__(self, capacity: int) -> None:
        """
        Initialize frame queue.

        Args:
            capacity: Maximum number of items (must be > 0)

        Raises:
            ValueError: If capacity <= 0
        """
        if capacity <= 0:
            raise ValueError(f"FrameQueue capacity must be > 0, got {capacity}")

        self._capacity = capacity
        self._items: Deque[Any] = deque()
        self._lock = threading.RLock()
        self._condition = threading.Condition(self._lock)

        self._total_pushed = 0
        self._total_rejected = 0

    def push(self, item: Any) -> None:
        """
        Append an item at the back of the queue.

        Args:
            item: Item to enqueue (must not be None)

        Raises:
            ValueError: If item is None
            FrameQueueFull: If the queue is at capacity (the item is not stored)
        """
        if item is None:
            raise ValueError("Cannot push None")

        with self._lock:
            if len(self._items) >= self._capacity:
                self._total_rejected += 1
                raise FrameQueueFull(f"FrameQueue full (capacity={self._capacity})")

            self._items.append(item)
            self._total_pushed += 1
            self._condition.notify_all()

    def pop(self, timeout: Optional[float] = None) -> Optional[Any]:
        """
        Remove and return the oldest item.

        Args:
            timeout: If None or <= 0, returns immediately (non-blocking).
                    Otherwise waits up to timeout seconds for an item.

        Returns:
            The oldest item, or None if the queue stayed empty
        """
        with self._lock:
            if self._items:
                return self._items.popleft()

            if timeout is None or timeout <= 0:
                return None

            end = time.monotonic() + timeout
            while True:
                remaining = end - time.monotonic()
                if remaining <= 0:
                    return None

                # wait releases lock and reacquires on wake
                self._condition.wait(timeout=remaining)

                if self._items:
                    return self._items.popleft()

    def clear(self) -> int:
        """
        Drop all queued items.

        Returns:
            Number of items discarded
        """
        with self._lock:
            dropped = len(self._items)
            self._items.clear()
            return dropped

    def stats(self) -> FrameQueueStats:
        with self._lock:
            return FrameQueueStats(
                capacity=self._capacity,
                count=len(self._items),
                total_pushed=self._total_pushed,
                rejected_count=self._total_rejected,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def is_full(self) -> bool:
        with self._lock:
            return len(self._items) >= self._capacity

    def is_empty(self) -> bool:
        with self._lock:
            return len(self._items) == 0

    @property
    def capacity(self) -> int:
        return self._capacity
