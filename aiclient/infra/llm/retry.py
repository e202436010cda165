# aiclient/infra/llm/retry.py
"""
Linear backoff for rate-limited (429) buffered calls.

Attempt n that comes back 429 waits BASE_DELAY * n before attempt n+1. The
last attempt's 429 is final. Anything other than a 429 is not retried.
"""
from __future__ import annotations
import logging
import time
from typing import Callable, Optional, TypeVar

from aiclient.constants import BASE_DELAY, MAX_RETRIES
from .errors import RateLimitedError, RequestCancelled

log = logging.getLogger("llm.retry")

T = TypeVar("T")

Sleeper = Callable[[float, Optional[object]], bool]


def interruptible_sleep(delay: float, cancel=None) -> bool:
    """Sleep `delay` seconds; returns True if the cancel token fired meanwhile."""
    if cancel is None:
        time.sleep(delay)
        return False
    return cancel.wait(delay)


class RetryGovernor:
    def __init__(self, max_retries: int = MAX_RETRIES, base_delay: float = BASE_DELAY,
                 sleep: Sleeper = interruptible_sleep):
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * attempt

    def run(self, fn: Callable[[], T], cancel=None) -> T:
        for attempt in range(1, self.max_retries + 1):
            if cancel is not None and cancel.cancelled:
                raise RequestCancelled()
            try:
                return fn()
            except RateLimitedError as exc:
                if attempt == self.max_retries:
                    log.warning("Rate limited (429) on final attempt %d/%d; giving up",
                                attempt, self.max_retries)
                    raise RateLimitedError(body=exc.body, retry_after=exc.retry_after,
                                           attempts=attempt) from exc
                delay = self.delay_for(attempt)
                log.info("Rate limited (429), retrying in %.1fs (attempt %d/%d)",
                         delay, attempt, self.max_retries)
                if self._sleep(delay, cancel):
                    raise RequestCancelled("Request cancelled during rate-limit backoff") from exc
