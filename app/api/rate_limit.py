"""In-memory sliding-window rate limiter for build starts.

Not shared across workers; each process enforces its own window.
"""

import time

from app.config import settings


class RateLimiter:
    """Sliding-window counter keyed by an arbitrary string (e.g. user id).

    Args:
        max_requests: Maximum requests allowed in the window.
        window_seconds: Length of the sliding window in seconds.
    """

    _PRUNE_INTERVAL: int = 500  # prune idle keys every N calls

    def __init__(self, max_requests: int = 60, window_seconds: int = 60) -> None:
        self._max = max_requests
        self._window = window_seconds
        self._hits: dict[str, list[float]] = {}
        self._calls = 0

    def _prune_idle_keys(self, now: float) -> None:
        cutoff = now - self._window
        dead = [k for k, ts in self._hits.items() if not ts or ts[-1] <= cutoff]
        for k in dead:
            del self._hits[k]

    def is_allowed(self, key: str) -> bool:
        """Record a hit for *key*; False if it exceeds the limit."""
        now = time.monotonic()
        cutoff = now - self._window

        self._calls += 1
        if self._calls % self._PRUNE_INTERVAL == 0:
            self._prune_idle_keys(now)

        timestamps = [t for t in self._hits.get(key, []) if t > cutoff]
        if len(timestamps) >= self._max:
            self._hits[key] = timestamps
            return False

        timestamps.append(now)
        self._hits[key] = timestamps
        return True

    def reset(self) -> None:
        self._hits.clear()


build_limiter = RateLimiter(max_requests=settings.BUILD_RATE_LIMIT_PER_HOUR, window_seconds=3600)
