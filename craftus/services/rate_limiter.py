"""
Rolling-window rate limiter shared by every pipeline in the process.

The limiter only decides; it never sleeps. Callers (RetryingApiClient) await
the duration returned by time_until_next_slot() or try_acquire().
"""

import logging
import threading
from typing import List

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Sliding window rate limiter.

    A timestamp is kept for every accepted call; a new call may proceed when
    fewer than max_calls_per_window timestamps fall in (now - window, now].
    """

    def __init__(self, max_calls_per_window: int, window_duration: float):
        """
        Initialize rate limiter.

        Args:
            max_calls_per_window: Maximum calls accepted per window (0 blocks everything)
            window_duration: Window length in seconds
        """
        if max_calls_per_window < 0:
            raise ValueError(f"max_calls_per_window must be >= 0, got {max_calls_per_window}")
        if window_duration <= 0:
            raise ValueError(f"window_duration must be > 0, got {window_duration}")

        self.max_calls_per_window = max_calls_per_window
        self.window_duration = window_duration
        self.call_times: List[float] = []
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        # Remove calls that have left the window
        cutoff = now - self.window_duration
        self.call_times = [t for t in self.call_times if t > cutoff]

    def _wait_locked(self, now: float) -> float:
        self._prune(now)
        if len(self.call_times) < self.max_calls_per_window:
            return 0.0
        if not self.call_times:
            # max_calls_per_window == 0: never allowed, poll once per window
            return self.window_duration
        return max(0.0, self.window_duration - (now - self.call_times[0]))

    def can_proceed(self, now: float) -> bool:
        """Whether a call made at `now` would fit in the window."""
        with self._lock:
            self._prune(now)
            return len(self.call_times) < self.max_calls_per_window

    def record_call(self, now: float) -> None:
        """Record an accepted call."""
        with self._lock:
            self.call_times.append(now)

    def time_until_next_slot(self, now: float) -> float:
        """Seconds until a slot frees up (0 when a call may proceed now)."""
        with self._lock:
            return self._wait_locked(now)

    def try_acquire(self, now: float) -> float:
        """
        Check and record in one step.

        Returns 0.0 when the call was accepted and recorded, otherwise the
        number of seconds to wait before trying again. Concurrent pipelines
        must use this instead of can_proceed() + record_call() so two callers
        never take the same slot.
        """
        with self._lock:
            wait = self._wait_locked(now)
            if wait == 0.0 and len(self.call_times) < self.max_calls_per_window:
                self.call_times.append(now)
                return 0.0
            return wait if wait > 0 else self.window_duration

    def get_current_rate(self, now: float) -> int:
        """Number of calls currently inside the window."""
        with self._lock:
            self._prune(now)
            return len(self.call_times)
