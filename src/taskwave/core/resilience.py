"""
Retry pacing for task-store requests.

The task store is a local HTTP service; transient connection errors and
429 responses are retried a few times with growing, jittered delays.
"""

import random


class ExponentialBackoff:
    """Exponential backoff with ±25% jitter."""

    def __init__(self, base_delay: float = 0.5, max_delay: float = 10.0, max_retries: int = 3):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_retries = max_retries

    def calculate_delay(self, attempt: int, retry_after: float | None = None) -> float:
        """Delay before retry number `attempt`; a server Retry-After wins, capped at max_delay."""
        if retry_after is not None:
            return min(max(0.0, retry_after), self.max_delay)

        delay = min(self.base_delay * (2**attempt), self.max_delay)
        jitter = delay * 0.25 * (random.random() * 2 - 1)
        return max(0.0, delay + jitter)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries
