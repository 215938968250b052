"""Retry policy with exponential backoff and jitter.

Backoff for attempt n (0-indexed) is `retry_delay_ms * 2**n`. A 429 from
the upstream waits for the larger of that and its Retry-After header.
Both get a random jitter in [0, max_jitter_ms) added on top.
"""

import random
from dataclasses import dataclass

from src.clients.errors import UpstreamRequestError


@dataclass
class RetryPolicy:
    """Per-call retry configuration.

    Attributes:
        max_retries: Retries after the initial attempt (total attempts = max_retries + 1)
        retry_delay_ms: Base delay for exponential backoff
        max_jitter_ms: Upper bound (exclusive) of the random jitter
    """

    max_retries: int = 3
    retry_delay_ms: float = 2000
    max_jitter_ms: float = 1000

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")

    def backoff_ms(self, attempt: int) -> float:
        return self.retry_delay_ms * (2 ** attempt)

    def delay_ms(self, error: UpstreamRequestError, attempt: int) -> float:
        """Delay before the next attempt, without jitter."""
        if error.is_rate_limited:
            return max(error.retry_after * 1000, self.backoff_ms(attempt))
        return self.backoff_ms(attempt)

    def should_retry(self, error: UpstreamRequestError, attempt: int) -> bool:
        """Whether another attempt follows attempt `attempt`.

        429 always retries while attempts remain; other errors only when
        they are transient.
        """
        if attempt >= self.max_retries:
            return False
        return error.is_rate_limited or error.retryable

    def jitter_ms(self) -> float:
        return random.random() * self.max_jitter_ms
