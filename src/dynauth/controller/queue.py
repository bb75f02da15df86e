"""Rate-limited, de-duplicating work queue.

Guarantees for any item:

* queued at most once while waiting to be processed;
* never handed to two workers at the same time (an item added while
  being processed is re-delivered only after :meth:`WorkQueue.done`);
* per-item exponential backoff for :meth:`WorkQueue.add_rate_limited`,
  reset by :meth:`WorkQueue.forget`.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections import deque
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Hashable

T = TypeVar("T", bound="Hashable")


class WorkQueue(Generic[T]):
    """Thread-safe work queue used by the controllers.

    Parameters
    ----------
    backoff_base:
        Delay in seconds for the first rate-limited retry of an item.
    backoff_max:
        Upper bound for the rate-limited delay.

    """

    def __init__(self, backoff_base: float = 0.5, backoff_max: float = 300.0) -> None:
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._cond = threading.Condition()
        self._queue: deque[T] = deque()
        self._dirty: set[T] = set()
        self._processing: set[T] = set()
        self._failures: dict[T, int] = {}
        self._delayed: list[tuple[float, int, T]] = []
        self._ready_at: dict[T, float] = {}
        self._seq = itertools.count()
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def add(self, item: T) -> None:
        """Queue *item* unless it is already waiting."""
        with self._cond:
            self._add(item)

    def _add(self, item: T) -> None:
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._cond.notify()

    def add_after(self, item: T, delay: float) -> None:
        """Queue *item* once *delay* seconds have passed.

        An item already waiting keeps a single entry with the earlier
        of the two deadlines.
        """
        if delay <= 0:
            self.add(item)
            return
        with self._cond:
            if self._shutting_down:
                return
            ready_at = time.monotonic() + delay
            pending = self._ready_at.get(item)
            if pending is not None and pending <= ready_at:
                return
            self._ready_at[item] = ready_at
            heapq.heappush(self._delayed, (ready_at, next(self._seq), item))
            self._cond.notify()

    def add_rate_limited(self, item: T) -> None:
        """Queue *item* after its current backoff delay."""
        self.add_after(item, self.when(item))

    def when(self, item: T) -> float:
        """Return the next backoff delay for *item* and count the failure."""
        with self._cond:
            failures = self._failures.get(item, 0)
            self._failures[item] = failures + 1
        return min(self._backoff_base * (2**failures), self._backoff_max)

    def num_requeues(self, item: T) -> int:
        with self._cond:
            return self._failures.get(item, 0)

    def forget(self, item: T) -> None:
        """Reset the backoff of *item*."""
        with self._cond:
            self._failures.pop(item, None)

    def get(self, timeout: float | None = None) -> T | None:
        """Return the next item, blocking until one is ready.

        Returns ``None`` once the queue is shut down, or when *timeout*
        elapses without an item.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                self._promote_delayed()
                if self._queue:
                    item = self._queue.popleft()
                    self._processing.add(item)
                    self._dirty.discard(item)
                    return item
                if self._shutting_down:
                    return None
                if deadline is not None and deadline <= time.monotonic():
                    return None
                self._cond.wait(timeout=self._next_wait(deadline))

    def done(self, item: T) -> None:
        """Mark *item* as processed; re-queue it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def shutdown(self) -> None:
        """Stop accepting items and release every blocked :meth:`get`."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    def _promote_delayed(self) -> None:
        now = time.monotonic()
        while self._delayed and self._delayed[0][0] <= now:
            ready_at, _, item = heapq.heappop(self._delayed)
            # Superseded by an earlier deadline for the same item.
            if self._ready_at.get(item) != ready_at:
                continue
            del self._ready_at[item]
            self._add(item)

    def _next_wait(self, deadline: float | None) -> float | None:
        now = time.monotonic()
        waits = []
        if self._delayed:
            waits.append(self._delayed[0][0] - now)
        if deadline is not None:
            waits.append(deadline - now)
        return max(min(waits), 0.0) if waits else None
