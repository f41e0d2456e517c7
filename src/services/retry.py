"""Retry policy with capped exponential backoff."""
from collections.abc import Callable
from dataclasses import dataclass, field

from shared.api_errors import ErrorDescriptor


def retry_transient(error: ErrorDescriptor) -> bool:
    """Retry rate limits, service failures and network errors; nothing else."""
    return error.is_transient


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times to retry a failed fetch, and how long to wait in between.

    `max_retries` counts additional attempts, so `max_retries=2` means at most three
    requests. The delay before retry `n` (0-based) is `base_delay * 2**n`, capped at
    `max_delay`.
    """

    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 30.0
    should_retry: Callable[[ErrorDescriptor], bool] = field(default=retry_transient)

    def delay_for(self, retry_index: int) -> float:
        """Seconds to wait before the given retry."""
        return min(self.base_delay * 2 ** retry_index, self.max_delay)

    def allows(self, error: ErrorDescriptor, failure_count: int) -> bool:
        """Whether another attempt is permitted after `failure_count` failures."""
        return failure_count <= self.max_retries and self.should_retry(error)


NO_RETRY = RetryPolicy(max_retries=0)
