"""Optimistic-lock retry for read-modify-write cycles.

Only ConflictError is retried. Each attempt calls ``fn`` again, so the
callable must re-read the aggregate it mutates. Delays grow exponentially
from ``base_delay`` (0.1s, 0.2s, 0.4s, ...); with the default of three
attempts the caller sleeps at most twice.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, TypeVar

from graphmem.context import RequestContext, check_context
from graphmem.errors import ConflictError, RetryExhaustedError
from graphmem.log_config import get_logger

log = get_logger("uow.retry")

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.1
DEFAULT_BACKOFF_FACTOR = 2.0


@dataclass
class RetryPolicy:
    """Bounded exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Sleep after the first failed attempt, in seconds
        factor: Multiplier applied to the delay after each failure
        sleep: Sleep function (injectable for tests)
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    factor: float = DEFAULT_BACKOFF_FACTOR
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(max_attempts=config.retry_max_attempts, base_delay=config.retry_base_delay)

    @classmethod
    def no_delay(cls, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> "RetryPolicy":
        return cls(max_attempts=max_attempts, base_delay=0.0, sleep=lambda _: None)

    def delay_for(self, attempt: int) -> float:
        """Sleep after failed attempt number ``attempt`` (1-based)."""
        return self.base_delay * (self.factor ** (attempt - 1))

    def delays(self) -> Iterator[float]:
        for attempt in range(1, self.max_attempts):
            yield self.delay_for(attempt)


def run_with_optimistic_retry(
    fn: Callable[[], T],
    policy: RetryPolicy | None = None,
    ctx: RequestContext | None = None,
    operation: str = "operation",
) -> T:
    """Run ``fn``, retrying on ConflictError with backoff.

    Args:
        fn: Read-modify-write cycle; must re-read state on every call
        policy: Retry policy (defaults to RetryPolicy())
        ctx: Request context, checked before every attempt
        operation: Name used in logs and the exhaustion error

    Returns:
        Whatever ``fn`` returns on its first successful attempt

    Raises:
        RetryExhaustedError: Every attempt hit a conflict
        GraphMemError: Any non-conflict error, immediately
    """
    policy = policy or RetryPolicy()
    last_error: ConflictError | None = None

    for attempt in range(1, policy.max_attempts + 1):
        check_context(ctx)
        try:
            result = fn()
            if attempt > 1:
                log.info(f"{operation}: succeeded on attempt {attempt}")
            return result
        except ConflictError as e:
            last_error = e
            if attempt == policy.max_attempts:
                break
            delay = policy.delay_for(attempt)
            log.debug(f"{operation}: conflict on attempt {attempt}/{policy.max_attempts}, retrying in {delay:.3f}s: {e}")
            policy.sleep(delay)

    log.warning(f"{operation}: retry budget exhausted after {policy.max_attempts} attempts")
    raise RetryExhaustedError(
        f"{operation} failed after {policy.max_attempts} attempts due to concurrent modification; please retry",
        attempts=policy.max_attempts,
    ) from last_error
