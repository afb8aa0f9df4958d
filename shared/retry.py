"""
Backoff policy for connection-level retries.
"""

import random


class BackoffPolicy:
    """Delay schedule and attempt budget for reconnect loops.

    The default schedule is linear: ``base_delay * attempt`` capped at
    ``max_delay`` (100ms, 200ms, ... up to 3s).
    """

    def __init__(self,
                 max_attempts: int = 10,
                 base_delay: float = 0.1,
                 max_delay: float = 3.0,
                 exponential_base: float = 2.0,
                 jitter: bool = False,
                 backoff_strategy: str = "linear"):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy

    @classmethod
    def from_millis(cls, max_attempts: int, step_ms: int, cap_ms: int) -> "BackoffPolicy":
        """Build the linear policy from millisecond settings."""
        return cls(max_attempts=max_attempts, base_delay=step_ms / 1000.0, max_delay=cap_ms / 1000.0)

    def exhausted(self, attempt: int) -> bool:
        """True once ``attempt`` has used up the budget."""
        return attempt >= self.max_attempts

    def delay(self, attempt: int) -> float:
        """Calculate the delay to wait after failed ``attempt`` (1-based)."""
        if self.backoff_strategy == "exponential":
            delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        elif self.backoff_strategy == "linear":
            delay = self.base_delay * attempt
        else:
            delay = self.base_delay

        delay = min(delay, self.max_delay)

        if self.jitter:
            jitter_amount = delay * 0.1
            delay += random.uniform(-jitter_amount, jitter_amount)

        return max(0.0, delay)

    def to_dict(self):
        return {
            "max_attempts": self.max_attempts,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
            "strategy": self.backoff_strategy,
        }
