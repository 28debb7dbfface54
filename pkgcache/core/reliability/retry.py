"""
Retry — bounded, fixed-delay retries for flaky network operations.

Downloads and clones are retried with the same pause between every
attempt; there is no backoff growth and no jitter. Mirrors are usually
rate-limited rather than overloaded, and a long fixed pause copes with
both.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from pkgcache.core.errors import ArgumentError, Interrupted, PkgCacheError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DELAY = 10.0
NETWORK_ATTEMPTS = 100


class RetryExhaustedError(PkgCacheError):
    """Every attempt failed."""

    def __init__(self, name: str, attempts: int, last_error: BaseException):
        super().__init__(f"{name} failed after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass
class RetryPolicy:
    """Call an operation up to ``max_attempts`` times, ``delay`` seconds apart.

    Only exceptions listed in ``retry_on`` trigger another attempt;
    anything else propagates immediately.
    """

    max_attempts: int = NETWORK_ATTEMPTS
    delay: float = DEFAULT_DELAY
    retry_on: tuple[type[BaseException], ...] = (Exception,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ArgumentError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay < 0:
            raise ArgumentError(f"delay must be >= 0, got {self.delay}")

    def call(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Return the first successful result of ``operation(*args, **kwargs)``.

        Raises:
            RetryExhaustedError: After ``max_attempts`` failures, chained to
                the last error.
        """
        name = getattr(operation, "__name__", repr(operation))
        attempt = 1
        while True:
            try:
                return operation(*args, **kwargs)
            except self.retry_on as e:
                if isinstance(e, (Interrupted, ArgumentError)):
                    raise
                if attempt >= self.max_attempts:
                    logger.warning("%s exhausted after %d attempt(s): %s", name, attempt, e)
                    raise RetryExhaustedError(name, attempt, e) from e
                logger.info(
                    "%s failed (attempt %d/%d): %s, retrying in %.0fs",
                    name, attempt, self.max_attempts, e, self.delay,
                )
                attempt += 1
                self.sleep(self.delay)
