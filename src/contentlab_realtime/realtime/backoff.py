"""Reconnect backoff policy."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class BackoffPolicy:
    """Bounded exponential backoff.

    Attempt n (1-based) waits min(base_delay * multiplier**(n-1), max_delay).
    max_attempts=None retries forever at the capped delay.
    """
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    max_attempts: Optional[int] = 5

    def delay_for(self, attempt: int) -> float:
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        # Stop growing once the cap is reached so huge attempt counts can't overflow
        delay = self.base_delay
        for _ in range(attempt - 1):
            delay *= self.multiplier
            if delay >= self.max_delay:
                return self.max_delay
        return min(delay, self.max_delay)

    def exhausted(self, attempt: int) -> bool:
        """True if attempt n is beyond the allowed number of retries."""
        return self.max_attempts is not None and attempt > self.max_attempts
