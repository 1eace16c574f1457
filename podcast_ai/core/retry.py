"""
Bounded retry with exponential backoff for provider calls.
Returns None after the last attempt instead of raising, so callers can
apply their own fallback (count a failed chunk, fail the job, ...).
"""

import time
import logging
from typing import Any, Callable, Optional

from podcast_ai.core.constants import MAX_RETRIES, RETRY_DELAY_SEC, RETRY_BACKOFF_MULTIPLIER
from podcast_ai.core.error_codes import JobError

logger = logging.getLogger(__name__)


class RetryableCaller:
    """
    Calls fn up to 1 + max_retries times. The delay starts at initial_delay
    and is multiplied after every failed attempt; it resets on each call().
    A JobError marked not retryable ends the call at once.
    """

    def __init__(self, max_retries: int = MAX_RETRIES,
                 initial_delay: float = RETRY_DELAY_SEC,
                 multiplier: float = RETRY_BACKOFF_MULTIPLIER,
                 max_delay: Optional[float] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self._sleep = sleep

    def delays(self) -> list[float]:
        """The waits a fully failing call() goes through, in order."""
        out = []
        delay = self.initial_delay
        for _ in range(self.max_retries):
            out.append(self._capped(delay))
            delay *= self.multiplier
        return out

    def _capped(self, delay: float) -> float:
        if self.max_delay is not None:
            return min(delay, self.max_delay)
        return delay

    def call(self, fn: Callable[..., Any], *args, label: str = "", **kwargs) -> Any:
        label = label or getattr(fn, '__name__', 'call')
        delay = self.initial_delay

        for attempt in range(self.max_retries + 1):
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                if isinstance(e, JobError) and not e.retryable:
                    logger.error("%s failed with a non-retryable error: %s", label, e)
                    return None
                if attempt >= self.max_retries:
                    logger.error("All %d retry attempts failed for %s: %s",
                                 self.max_retries, label, e)
                    return None
                wait = self._capped(delay)
                logger.warning("%s attempt %d failed (%s), retrying in %.1f seconds...",
                               label, attempt + 1, e, wait)
                self._sleep(wait)
                delay *= self.multiplier

        return None
