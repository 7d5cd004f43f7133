"""
Sliding-window rate limiting per sender.

Each identity keeps a deque of admission timestamps; entries older than
the window are evicted from the left on every check.
"""

import time
from collections import defaultdict, deque
from typing import Any, Callable

from loguru import logger


class RateLimiter:
    """
    Per-identity sliding-window admission control.

    An attempt is admitted iff fewer than ``max_requests`` admissions
    happened within the trailing ``window_seconds``. Admission records the
    timestamp immediately.
    """

    def __init__(
        self,
        max_requests: int = 20,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock

        # identity -> admission timestamps, oldest first
        self._windows: dict[str, deque[float]] = defaultdict(deque)
        self._last_sweep = clock()

        self._admitted = 0
        self._rejected = 0

    def _evict(self, window: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()

    def admit(self, identity: str) -> bool:
        """
        Check and record an attempt for an identity.

        Args:
            identity: Sender key.

        Returns:
            True if admitted, False if rate limited.
        """
        now = self._clock()
        # Forget idle identities at most once per window
        if now - self._last_sweep >= self.window_seconds:
            self.sweep()

        window = self._windows[identity]
        self._evict(window, now)

        if len(window) >= self.max_requests:
            self._rejected += 1
            logger.debug(f"Rate limit exceeded for {identity}")
            return False

        window.append(now)
        self._admitted += 1
        return True

    def remaining(self, identity: str) -> int:
        """Admissions still available to an identity in the current window."""
        window = self._windows.get(identity)
        if not window:
            return self.max_requests
        self._evict(window, self._clock())
        return max(0, self.max_requests - len(window))

    def reset(self, identity: str | None = None) -> None:
        """Forget history for one identity, or for everyone."""
        if identity is None:
            self._windows.clear()
        else:
            self._windows.pop(identity, None)

    def sweep(self) -> int:
        """
        Drop identities whose windows have fully expired.

        Runs from admit() once per window, so senders that never come back
        are not tracked forever.

        Returns:
            Number of identities removed.
        """
        now = self._clock()
        self._last_sweep = now
        stale = []
        for identity, window in self._windows.items():
            self._evict(window, now)
            if not window:
                stale.append(identity)
        for identity in stale:
            del self._windows[identity]
        return len(stale)

    def get_stats(self) -> dict[str, Any]:
        """Get rate limiter statistics."""
        return {
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
            "tracked_identities": len(self._windows),
            "admitted": self._admitted,
            "rejected": self._rejected,
        }
