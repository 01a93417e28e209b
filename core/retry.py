"""
Core Module - Retry Policy.

Bounded retry loop with exponential backoff for calls to
external collaborators (fact source, repositories).

Only TransientIOError (and subclasses) is retried. Every other
exception propagates on the first occurrence. When the attempt
budget is exhausted the last TransientIOError is re-raised so
the caller can record a per-key failure.
"""

import logging
from typing import Callable, Optional, Tuple, Type, TypeVar

from .clock import ClockProtocol, SystemClock
from .config import RetryConfig
from .exceptions import TransientIOError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Explicit attempt-counting retry loop.

    Usage:
        policy = RetryPolicy(RetryConfig(max_attempts=3), clock)
        facts = policy.call(source.fetch_facts, day, period, description="fetch P7")
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        clock: Optional[ClockProtocol] = None,
        retry_on: Tuple[Type[BaseException], ...] = (TransientIOError,),
    ):
        self._config = config or RetryConfig()
        self._clock = clock or SystemClock()
        self._retry_on = retry_on

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    def delay_for(self, attempt: int) -> float:
        """
        Backoff delay after a failed attempt.

        Args:
            attempt: Number of the attempt that just failed (1-indexed)
        """
        delay = self._config.initial_delay_seconds * (
            self._config.backoff_multiplier ** (attempt - 1)
        )
        return min(delay, self._config.max_delay_seconds)

    def call(self, fn: Callable[..., T], *args, description: str = "", **kwargs) -> T:
        """
        Call fn, retrying retryable failures.

        Raises:
            The last retryable exception once attempts are exhausted,
            or any non-retryable exception immediately.
        """
        label = description or getattr(fn, "__name__", "call")
        attempt = 0

        while True:
            attempt += 1
            try:
                return fn(*args, **kwargs)
            except self._retry_on as e:
                if attempt >= self._config.max_attempts:
                    logger.error(
                        f"{label} failed after {attempt} attempts: {e}"
                    )
                    raise

                delay = self.delay_for(attempt)
                logger.warning(
                    f"{label} failed (attempt {attempt}/{self._config.max_attempts}): "
                    f"{e}. Retrying in {delay:.1f}s..."
                )
                self._clock.sleep(delay)


__all__ = ["RetryPolicy"]
