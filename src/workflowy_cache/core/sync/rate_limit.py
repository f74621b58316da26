"""Minimum-interval rate limiter for the export endpoint."""

import time
from collections.abc import Callable


class RateLimiter:
    """Allows one call per interval, tracked by the last call's timestamp."""

    def __init__(self, interval: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.interval = interval
        self._clock = clock
        self._last_call: float | None = None

    def wait_time(self) -> float:
        """Seconds until the next call is allowed (0 if allowed now)."""
        if self._last_call is None:
            return 0.0
        elapsed = self._clock() - self._last_call
        return max(0.0, self.interval - elapsed)

    def allowed(self) -> bool:
        return self.wait_time() <= 0.0

    def mark(self) -> None:
        self._last_call = self._clock()

    def reset(self) -> None:
        self._last_call = None
