"""
Bounded exponential backoff for backend calls.

Only transient failures are retried; refusals and stage errors pass
through untouched on the first attempt.

Usage:
    policy = RetryPolicy(max_attempts=3, base_delay=0.25)
    result = call_with_retry(policy, client.is_approved_for, context, node, principal)
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Tuple, Type, TypeVar

from .errors import TransientBackendError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry configuration: attempts include the first call."""
    max_attempts: int = 3
    base_delay: float = 0.25
    max_delay: float = 4.0
    multiplier: float = 2.0
    retry_on: Tuple[Type[BaseException], ...] = (TransientBackendError,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.max_delay, self.base_delay * (self.multiplier ** (attempt - 1)))


NO_RETRY = RetryPolicy(max_attempts=1)


def call_with_retry(policy: RetryPolicy, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Call func, retrying retryable exceptions with exponential backoff.

    Raises:
        The last retryable exception once attempts are exhausted, or any
        non-retryable exception immediately.
    """
    attempts = max(1, policy.max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return func(*args, **kwargs)
        except policy.retry_on as e:
            if attempt >= attempts:
                logger.warning(
                    "giving up on %s after %d attempts: %s",
                    getattr(func, "__name__", func), attempt, e
                )
                raise
            delay = policy.delay_for(attempt)
            logger.info(
                "retrying %s in %.2fs (attempt %d/%d): %s",
                getattr(func, "__name__", func), delay, attempt, attempts, e
            )
            policy.sleep(delay)
    raise AssertionError("unreachable")
