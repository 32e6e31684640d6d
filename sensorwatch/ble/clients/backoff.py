"""Exponential reconnect delay for the watch loop."""

from __future__ import annotations

MIN_BACKOFF_S = 2.0
MAX_BACKOFF_S = 300.0


class BackoffPolicy:
    """Doubling delay, clamped to [min_delay, max_delay].

    Only computes values; sleeping is left to the caller so waits can be
    raced against cancellation.
    """

    def __init__(self, min_delay: float = MIN_BACKOFF_S, max_delay: float = MAX_BACKOFF_S):
        if min_delay <= 0 or max_delay < min_delay:
            raise ValueError("backoff bounds must satisfy 0 < min_delay <= max_delay")
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.current_delay = min_delay

    def reset(self) -> float:
        self.current_delay = self.min_delay
        return self.current_delay

    def next(self, previous_delay: float) -> float:
        return min(previous_delay * 2, self.max_delay)

    def advance(self) -> float:
        """Return the delay for this failure and grow it for the next one."""
        delay = self.current_delay
        self.current_delay = self.next(delay)
        return delay
