"""
Backoff and retry for contended resources.

The state file lock is the main customer: acquiring it is retried while
another writer holds it, with the delay growing between attempts. Callers
get a ``RetryResult`` back instead of the last exception so they can
decide how a timeout is reported.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from .exceptions import RoadmapError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BackoffStrategy(Enum):
    CONSTANT = "constant"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass
class RetryConfig:
    """
    How many times to try and how long to wait in between.

    ``retry_on`` lists exception types that are always retried and
    ``stop_on`` types that never are. Anything else is retried only when
    ``retry_transient`` is set and the error counts as transient.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    backoff_multiplier: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.25
    retry_on: Sequence[type[Exception]] = field(default_factory=lambda: (Exception,))
    stop_on: Sequence[type[Exception]] = field(default_factory=tuple)
    retry_transient: bool = True

    def _base_delay(self, attempt: int) -> float:
        if self.backoff_strategy is BackoffStrategy.LINEAR:
            return self.initial_delay * (attempt + 1)
        if self.backoff_strategy is BackoffStrategy.EXPONENTIAL:
            return self.initial_delay * self.backoff_multiplier**attempt
        return self.initial_delay

    def calculate_delay(self, attempt: int) -> float:
        """Seconds to sleep after the failure of zero-based ``attempt``."""
        delay = min(self._base_delay(attempt), self.max_delay)
        if not self.jitter:
            return delay
        spread = delay * self.jitter_factor
        return max(0.0, delay + random.uniform(-spread, spread))


@dataclass
class RetryResult:
    success: bool
    result: Any = None
    attempts: int = 0
    total_delay: float = 0.0
    last_exception: Exception | None = None

    @property
    def failed(self) -> bool:
        return not self.success


def should_retry(exception: Exception, config: RetryConfig, attempt: int) -> bool:
    """Whether another try is allowed after ``attempt`` tries have failed."""
    if attempt >= config.max_attempts:
        return False
    if isinstance(exception, tuple(config.stop_on)):
        return False
    if isinstance(exception, tuple(config.retry_on)):
        return True
    if not config.retry_transient:
        return False
    if isinstance(exception, RoadmapError):
        return exception.retryable
    return is_retryable(exception)


async def async_retry_with_result(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    **kwargs: Any,
) -> RetryResult:
    """
    Await ``func(*args, **kwargs)`` until it succeeds or attempts run out.

    An exception the config does not consider retryable is raised straight
    away. Running out of attempts returns a failed result carrying the last
    exception. There is no sleep after the final attempt.
    """
    policy = config or RetryConfig()
    name = getattr(func, "__name__", "operation")
    waited = 0.0
    last_error: Exception | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            value = await func(*args, **kwargs)
        except Exception as e:
            if not should_retry(e, policy, 0):
                raise
            last_error = e
        else:
            return RetryResult(success=True, result=value, attempts=attempt, total_delay=waited)

        if attempt == policy.max_attempts:
            break
        delay = policy.calculate_delay(attempt - 1)
        waited += delay
        logger.debug(
            f"{name} attempt {attempt}/{policy.max_attempts} failed ({last_error}); "
            f"next try in {delay:.2f}s"
        )
        await asyncio.sleep(delay)

    return RetryResult(
        success=False,
        attempts=policy.max_attempts,
        total_delay=waited,
        last_exception=last_error,
    )


# Lock files: 5 tries, 100ms doubling, only while the lock file already exists
LOCK_RETRY_CONFIG = RetryConfig(
    max_attempts=5,
    initial_delay=0.1,
    max_delay=10.0,
    jitter=False,
    retry_on=(FileExistsError,),
    retry_transient=False,
)
