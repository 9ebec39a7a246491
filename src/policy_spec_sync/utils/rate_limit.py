"""Rate limiting for Kubernetes API calls."""

from __future__ import annotations

import threading
import time
from functools import wraps
from typing import Any, Callable, TypeVar

_F = TypeVar("_F", bound=Callable[..., Any])


class RateLimiter:
    """Minimum-interval limiter shared by every worker calling one cluster.

    Calls are spaced at least ``1 / rate_per_second`` apart; a non-positive
    rate disables limiting.
    """

    def __init__(self, rate_per_second: float):
        self.rate_per_second = rate_per_second
        self._lock = threading.Lock()
        self._next_slot = 0.0

    def wait(self) -> float:
        """Block until the next call slot; return the time slept."""
        if self.rate_per_second <= 0:
            return 0.0
        min_interval = 1.0 / self.rate_per_second
        with self._lock:
            now = time.monotonic()
            slot = max(now, self._next_slot)
            self._next_slot = slot + min_interval
        sleep_time = slot - now
        if sleep_time > 0:
            time.sleep(sleep_time)
        return max(sleep_time, 0.0)

    def __call__(self, func: _F) -> _F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            self.wait()
            return func(*args, **kwargs)

        return wrapper  # type: ignore
