"""Deduplicating work queue with single-flight processing and delayed adds."""

from __future__ import annotations

import heapq
import threading
import time
from collections import deque
from typing import Callable, Generic, Hashable, TypeVar

from . import metrics

K = TypeVar("K", bound=Hashable)


class WorkQueue(Generic[K]):
    """FIFO of keys where each key is queued at most once.

    A key handed out by ``get`` stays in the processing set until ``done``.
    Adding it again meanwhile only marks it dirty; ``done`` puts it back in
    the queue, so no two workers ever hold the same key.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: deque[K] = deque()
        self._dirty: set[K] = set()
        self._processing: set[K] = set()
        self._shutting_down = False

        self._waiting: list[tuple[float, int, K]] = []
        self._waiting_deadlines: dict[K, float] = {}
        self._sequence = 0
        self._delay_cond = threading.Condition()
        self._delay_thread = threading.Thread(target=self._delay_loop, name="workqueue-delay", daemon=True)
        self._delay_thread.start()

    def add(self, key: K) -> None:
        with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            metrics.queue_depth.set(len(self._queue))
            self._cond.notify()

    def add_after(self, key: K, delay: float) -> None:
        """Add ``key`` once ``delay`` seconds have passed, without blocking the caller."""
        if delay <= 0:
            self.add(key)
            return
        with self._delay_cond:
            if self._shutting_down:
                return
            deadline = self._clock() + delay
            current = self._waiting_deadlines.get(key)
            if current is not None and current <= deadline:
                return
            self._waiting_deadlines[key] = deadline
            self._sequence += 1
            heapq.heappush(self._waiting, (deadline, self._sequence, key))
            self._delay_cond.notify()

    def get(self, timeout: float | None = None) -> K | None:
        """Take the next key, or None on shutdown or timeout."""
        with self._cond:
            end = None if timeout is None else self._clock() + timeout
            while not self._queue and not self._shutting_down:
                remaining = None if end is None else end - self._clock()
                if remaining is not None and remaining <= 0:
                    return None
                self._cond.wait(remaining)
            if self._shutting_down:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            metrics.queue_depth.set(len(self._queue))
            return key

    def done(self, key: K) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty and not self._shutting_down:
                self._queue.append(key)
                metrics.queue_depth.set(len(self._queue))
                self._cond.notify()
            else:
                self._cond.notify_all()

    def shutdown(self) -> None:
        """Stop handing out keys and reject new ones. Keys being processed may still call ``done``."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        with self._delay_cond:
            self._delay_cond.notify_all()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until no key is being processed."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._processing, timeout)

    @property
    def is_shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def pending_delayed(self) -> int:
        with self._delay_cond:
            return len(self._waiting_deadlines)

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def _delay_loop(self) -> None:
        while True:
            ready: list[K] = []
            with self._delay_cond:
                if self._shutting_down:
                    return
                now = self._clock()
                while self._waiting and self._waiting[0][0] <= now:
                    deadline, _, key = heapq.heappop(self._waiting)
                    # Skip entries superseded by an earlier deadline
                    if self._waiting_deadlines.get(key) == deadline:
                        del self._waiting_deadlines[key]
                        ready.append(key)
                if not ready:
                    timeout = self._waiting[0][0] - now if self._waiting else None
                    self._delay_cond.wait(timeout)
                    continue
            for key in ready:
                self.add(key)
