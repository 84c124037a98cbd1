"""
Bounded retry for device operations.

Retries are always finite and always explicit: nothing in the device path
retries on its own. A wrapper re-raises the last error once attempts run out.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Tuple, Type, TypeVar

from polyfield_core.errors import DeviceConnectionError, DeviceTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (DeviceConnectionError, DeviceTimeoutError)


@dataclass
class RetryPolicy:
    """
    Attributes:
        attempts: Total tries, including the first
        delay_s: Wait before the second try
        backoff: Multiplier applied to the wait after each failure
        max_delay_s: Upper bound on a single wait
    """

    attempts: int = 3
    delay_s: float = 1.0
    backoff: float = 2.0
    max_delay_s: float = 10.0

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff < 1.0:
            raise ValueError("backoff must be >= 1.0")

    def delays(self):
        """Waits between consecutive attempts."""
        delay = self.delay_s
        for _ in range(self.attempts - 1):
            yield min(delay, self.max_delay_s)
            delay *= self.backoff


def retry_call(
    fn: Callable[[], T],
    policy: RetryPolicy = None,
    retry_on: Tuple[Type[BaseException], ...] = RETRYABLE_ERRORS,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
) -> T:
    """
    Call `fn` until it succeeds or the policy's attempts are used up.

    Only exceptions in `retry_on` are retried; anything else propagates
    immediately.
    """
    policy = policy or RetryPolicy()
    delays = policy.delays()
    attempt = 1
    while True:
        try:
            return fn()
        except retry_on as e:
            wait = next(delays, None)
            if wait is None:
                logger.error("%s failed after %d attempts: %s", description, attempt, e)
                raise
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                description, attempt, policy.attempts, e, wait,
            )
            sleep(wait)
            attempt += 1


def connect_with_retry(manager, config, policy: RetryPolicy = None, sleep=time.sleep):
    """`ConnectionManager.connect` wrapped in a bounded retry."""
    return retry_call(
        lambda: manager.connect(config),
        policy=policy,
        retry_on=(DeviceTimeoutError, DeviceConnectionError),
        sleep=sleep,
        description=f"connect {config.role.value}",
    )
