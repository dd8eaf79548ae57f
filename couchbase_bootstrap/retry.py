"""
Retry/Backoff Engine - bounded polling for the bootstrap protocol.

All three polling sites (node process start, cluster initialization and
rebalance conflicts) go through the two combinators in this module.
Sleeps happen only between attempts, so an operation that succeeds on
attempt k has slept exactly k-1 times. Exhausting the budget raises
RetryExhaustedError, which the CLI turns into a non-zero exit.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

from .constants import RuntimeConfig
from .exceptions import RetryExhaustedError, ValidationError
from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to sleep between tries."""
    max_attempts: int
    interval: float

    def __post_init__(self):
        if not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise ValidationError(
                f"max_attempts must be a positive integer, got {self.max_attempts!r}"
            )
        if self.interval < 0:
            raise ValidationError(f"interval must be >= 0, got {self.interval!r}")


@dataclass(frozen=True)
class RetryPolicies:
    """The three independent policies used by the membership state machine."""
    process_start: RetryPolicy
    cluster_init: RetryPolicy
    rebalance: RetryPolicy

    @classmethod
    def from_environment(cls) -> 'RetryPolicies':
        """Build the policies from defaults and COUCHBASE_BOOTSTRAP_* overrides."""
        return cls(
            process_start=RetryPolicy(
                RuntimeConfig.get_process_start_attempts(),
                RuntimeConfig.get_process_start_interval(),
            ),
            cluster_init=RetryPolicy(
                RuntimeConfig.get_cluster_init_attempts(),
                RuntimeConfig.get_cluster_init_interval(),
            ),
            rebalance=RetryPolicy(
                RuntimeConfig.get_rebalance_attempts(),
                RuntimeConfig.get_rebalance_interval(),
            ),
        )


def retry_until(
    predicate: Callable[[], bool],
    policy: RetryPolicy,
    operation: str,
    sleep: Callable[[float], None] = time.sleep,
    last_output: Optional[Callable[[], Optional[str]]] = None,
) -> int:
    """
    Poll ``predicate`` until it returns True.

    Args:
        predicate: Zero-argument callable; a truthy result ends the wait
        policy: Attempt bound and sleep interval
        operation: Human-readable name used in logs and errors
        sleep: Sleep function (injectable for tests)
        last_output: Returns the raw output behind the last falsy result,
            attached to the error when the wait gives up

    Returns:
        The attempt number on which the predicate succeeded

    Raises:
        RetryExhaustedError: after ``policy.max_attempts`` falsy results
    """
    for attempt in range(1, policy.max_attempts + 1):
        if predicate():
            if attempt > 1:
                logger.info(f"{operation}: succeeded on attempt {attempt}")
            return attempt

        if attempt < policy.max_attempts:
            logger.info(
                f"{operation}: not ready yet, retrying in {policy.interval:.1f}s "
                f"(attempt {attempt}/{policy.max_attempts})"
            )
            sleep(policy.interval)

    logger.error(f"{operation}: giving up after {policy.max_attempts} attempts")
    raise RetryExhaustedError(
        operation, policy.max_attempts,
        output=last_output() if last_output is not None else None,
    )


def retry_call(
    func: Callable[[], T],
    policy: RetryPolicy,
    operation: str,
    retry_exceptions: Tuple[Type[BaseException], ...],
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``func`` until it returns without raising one of ``retry_exceptions``.

    Exceptions outside ``retry_exceptions`` propagate on the first occurrence.

    Raises:
        RetryExhaustedError: chained to the last retryable error once the
            attempt budget is spent
    """
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return func()
        except retry_exceptions as e:
            last_error = e

            if attempt < policy.max_attempts:
                logger.warning(
                    f"{operation}: {e}; retrying in {policy.interval:.1f}s "
                    f"(attempt {attempt}/{policy.max_attempts})"
                )
                sleep(policy.interval)

    logger.error(f"{operation}: giving up after {policy.max_attempts} attempts")
    raise RetryExhaustedError(operation, policy.max_attempts, last_error) from last_error


__all__ = [
    'RetryPolicy',
    'RetryPolicies',
    'retry_until',
    'retry_call',
]
