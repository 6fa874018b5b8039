"""Rate limited work queue feeding the controller workers."""

from __future__ import annotations

import heapq
import itertools
import os
import threading
import time
from typing import Any, Callable, Hashable

from .. import metrics

DEFAULT_BASE_DELAY = float(os.getenv("WORKQUEUE_BASE_DELAY_SECONDS", "0.005"))
DEFAULT_MAX_DELAY = float(os.getenv("WORKQUEUE_MAX_DELAY_SECONDS", "1000"))


class ExponentialBackoff:
    """Per item exponential backoff: ``base * 2**failures`` capped at ``max_delay``."""

    def __init__(self, base_delay: float = DEFAULT_BASE_DELAY, max_delay: float = DEFAULT_MAX_DELAY):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            failures = self._failures.get(item, 0)
            self._failures[item] = failures + 1
        # Large exponents overflow float before the cap applies.
        if failures > 64:
            return self.max_delay
        return min(self.base_delay * (2 ** failures), self.max_delay)

    def retries(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)


class RateLimitingQueue:
    """A de-duplicating FIFO queue with delayed and rate limited adds.

    An item is handed to at most one worker at a time. Re-adding an item
    that is being processed marks it dirty, and it is queued again once the
    worker calls ``done``.
    """

    def __init__(
        self,
        name: str,
        rate_limiter: ExponentialBackoff | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.rate_limiter = rate_limiter or ExponentialBackoff()
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: list[Hashable] = []
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._waiting: list[tuple[float, int, Hashable]] = []
        self._counter = itertools.count()
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def _report_depth(self) -> None:
        metrics.workqueue_depth.labels(name=self.name).set(len(self._queue))

    def _add_locked(self, item: Hashable) -> None:
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._report_depth()
        self._cond.notify()

    def add(self, item: Hashable) -> None:
        with self._cond:
            self._add_locked(item)

    def add_after(self, item: Hashable, delay: float) -> None:
        """Add ``item`` once ``delay`` seconds have passed."""
        if delay <= 0:
            self.add(item)
            return
        with self._cond:
            if self._shutting_down:
                return
            heapq.heappush(self._waiting, (self._clock() + delay, next(self._counter), item))
            self._cond.notify()

    def add_rate_limited(self, item: Hashable) -> None:
        metrics.workqueue_retries_total.labels(name=self.name).inc()
        self.add_after(item, self.rate_limiter.when(item))

    def forget(self, item: Hashable) -> None:
        """Stop tracking retries of ``item`` after it was processed successfully."""
        self.rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self.rate_limiter.retries(item)

    def _promote_ready_locked(self) -> float | None:
        """Move due delayed items into the queue; return seconds until the next one."""
        now = self._clock()
        while self._waiting and self._waiting[0][0] <= now:
            _, _, item = heapq.heappop(self._waiting)
            self._add_locked(item)
        if self._waiting:
            return max(self._waiting[0][0] - now, 0.0)
        return None

    def get(self, timeout: float | None = None) -> tuple[Any, bool]:
        """Block until an item is available.

        Args:
            timeout: Give up after this many seconds and return ``(None, False)``

        Returns:
            The item and whether the queue has been shut down
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                next_due = self._promote_ready_locked()
                if self._queue:
                    break
                if self._shutting_down:
                    return None, True

                wait = next_due
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None, False
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

            item = self._queue.pop(0)
            self._processing.add(item)
            self._dirty.discard(item)
            self._report_depth()
            return item, False

    def done(self, item: Hashable) -> None:
        """Mark ``item`` as processed, requeueing it if it was re-added meanwhile."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._report_depth()
                self._cond.notify()

    def shut_down(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._waiting.clear()
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down
