"""Exponential backoff shared by the store client and the watch dispatcher."""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class Backoff:
    """Delay schedule ``base * multiplier**attempt`` capped at ``max_sleep`` plus jitter.

    Examples
    --------
    >>> policy = Backoff(base=0.5, multiplier=2.0, max_sleep=3.0, jitter=0.0)
    >>> [policy.delay(attempt) for attempt in range(4)]
    [0.5, 1.0, 2.0, 3.0]
    """

    base: float = 0.1
    multiplier: float = 2.0
    max_sleep: float = 5.0
    jitter: float = 0.1

    def delay(self, attempt: int) -> float:
        """Return the sleep before retry number *attempt* (0-based)."""

        delay = min(self.base * (self.multiplier**attempt), self.max_sleep)
        if self.jitter > 0:
            delay += random.uniform(0.0, self.jitter)
        return delay
