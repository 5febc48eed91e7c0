"""Retry policy used by the store's load actions."""
# rehabhub/retry.py

import logging
import time
from typing import Callable, Optional

from rehabhub import config

logger = logging.getLogger(__name__)


def linear_backoff(base_seconds: float) -> Callable[[int], float]:
    """Delay of `attempt * base_seconds` after the given failed attempt; no jitter."""
    return lambda attempt: attempt * base_seconds


class RetryOutcome:
    """What happened across all attempts of a retried call."""

    def __init__(self, success: bool, value=None, error: Optional[str] = None, attempts: int = 0):
        self.success = success
        self.value = value
        self.error = error
        self.attempts = attempts


class RetryPolicy:
    """Runs an operation up to `max_attempts` times, sleeping between failures.

    The operation must return an object with `success` and `error` attributes
    (a gateway result). A falsy `success` and a raised exception both count as a
    failed attempt. Attempts run sequentially on the caller's thread.
    """

    def __init__(
        self,
        max_attempts: int = config.LOAD_ATTEMPTS,
        delay: Optional[Callable[[int], float]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.delay = delay or linear_backoff(config.RETRY_DELAY_SECONDS)
        self.sleep = sleep

    def run(self, operation: Callable[[], object], description: str = "operation") -> RetryOutcome:
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = operation()
            except Exception as exc:
                last_error = str(exc)
                logger.warning("Attempt %d to %s raised: %s", attempt, description, exc)
            else:
                if result.success:
                    return RetryOutcome(True, value=result, attempts=attempt)
                last_error = result.error
                logger.warning("Attempt %d to %s failed: %s", attempt, description, last_error)
            if attempt < self.max_attempts:
                self.sleep(self.delay(attempt))
        return RetryOutcome(False, error=last_error, attempts=self.max_attempts)
