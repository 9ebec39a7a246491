"""Per-key exponential backoff with jitter."""

from __future__ import annotations

import random
import threading
from typing import Callable, Hashable

from tenacity import RetryCallState, wait_exponential


class Backoff:
    """Tracks consecutive failures per key and computes the next requeue delay.

    Delay for the n-th consecutive failure is ``base * factor ** (n - 1)``
    stretched by up to ``jitter`` (a fraction), and never more than
    ``maximum``.
    """

    def __init__(
        self,
        base: float = 1.0,
        maximum: float = 60.0,
        factor: float = 2.0,
        jitter: float = 0.1,
        rand: Callable[[], float] = random.random,
    ):
        self.base = base
        self.maximum = maximum
        self.factor = factor
        self.jitter = jitter
        self._rand = rand
        self._wait = wait_exponential(multiplier=base, max=maximum, exp_base=factor)
        self._failures: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def next_delay(self, key: Hashable) -> float:
        with self._lock:
            failures = self._failures.get(key, 0) + 1
            self._failures[key] = failures
        state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        state.attempt_number = failures
        delay = self._wait(state)
        return min(delay * (1.0 + self.jitter * self._rand()), self.maximum)

    def failures(self, key: Hashable) -> int:
        with self._lock:
            return self._failures.get(key, 0)

    def forget(self, key: Hashable) -> None:
        with self._lock:
            self._failures.pop(key, None)
