"""Retry policy with exponential backoff for WAF operations."""

import time
import random
import threading
from typing import Callable, TypeVar, Optional, FrozenSet, Iterable
from waf_deploy.utils.errors import (
    ErrorKind,
    ErrorHandler,
    RetryCanceledError,
    RetryTimeoutError,
    error_handler,
)
from waf_deploy.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

# WAF Classic propagates changes slowly; the provider waits up to 15 minutes
DEFAULT_MAX_DURATION = 15 * 60

DEFAULT_RETRYABLE_KINDS = frozenset({
    ErrorKind.STALE_TOKEN,
    ErrorKind.CONCURRENT_MODIFICATION,
    ErrorKind.NOT_PROPAGATED,
    ErrorKind.THROTTLED,
})


class RetryPolicy:
    """Duration budget and backoff schedule for retrying transient failures."""

    def __init__(
        self,
        max_duration: float = DEFAULT_MAX_DURATION,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_kinds: Optional[Iterable[ErrorKind]] = None,
        classifier: Optional[ErrorHandler] = None
    ):
        """Initialize retry policy.

        Args:
            max_duration: Wall clock budget in seconds for all attempts
            base_delay: Base delay in seconds for first retry
            max_delay: Maximum delay in seconds between retries
            exponential_base: Base for exponential backoff calculation
            jitter: Whether to add random jitter to delay
            retryable_kinds: Error kinds that trigger another attempt
            classifier: Error handler used to classify exceptions
        """
        if max_duration < 0:
            raise ValueError("max_duration must not be negative")
        if base_delay < 0 or max_delay < 0:
            raise ValueError("delays must not be negative")

        self.max_duration = max_duration
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_kinds: FrozenSet[ErrorKind] = (
            frozenset(retryable_kinds) if retryable_kinds is not None
            else DEFAULT_RETRYABLE_KINDS
        )
        self.classifier = classifier or error_handler

    def classify(self, error: Exception) -> ErrorKind:
        return self.classifier.classify(error)

    def is_retryable(self, error: Exception) -> bool:
        """Determine if an error should trigger another attempt.

        Args:
            error: The exception that occurred

        Returns:
            True if the error's kind is in the retryable set
        """
        kind = self.classify(error)
        return kind is not ErrorKind.FATAL and kind in self.retryable_kinds

    def get_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-indexed)

        Returns:
            Delay in seconds before next retry
        """
        delay = min(
            self.base_delay * (self.exponential_base ** attempt),
            self.max_delay
        )

        # Random value between 0 and 10% of delay
        if self.jitter and delay > 0:
            delay += random.uniform(0, delay * 0.1)

        return delay

    def replace(self, **overrides) -> 'RetryPolicy':
        """Return a copy of this policy with some settings overridden."""
        settings = {
            'max_duration': self.max_duration,
            'base_delay': self.base_delay,
            'max_delay': self.max_delay,
            'exponential_base': self.exponential_base,
            'jitter': self.jitter,
            'retryable_kinds': self.retryable_kinds,
            'classifier': self.classifier,
        }
        settings.update({k: v for k, v in overrides.items() if v is not None})
        return RetryPolicy(**settings)

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_duration={self.max_duration}, base_delay={self.base_delay}, "
            f"max_delay={self.max_delay}, exponential_base={self.exponential_base}, "
            f"jitter={self.jitter})"
        )


class Backoff:
    """Tracks elapsed time and waits between attempts of one retry loop."""

    def __init__(
        self,
        policy: RetryPolicy,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.policy = policy
        self.cancel_event = cancel_event or threading.Event()
        self.budget = policy.max_duration if timeout is None else timeout
        self.clock = clock
        self.started = clock()
        self.attempt = 0

    @property
    def elapsed(self) -> float:
        return self.clock() - self.started

    @property
    def canceled(self) -> bool:
        return self.cancel_event.is_set()

    def wait(self, last_error: Exception, description: str) -> None:
        """Sleep before the next attempt.

        Raises:
            RetryTimeoutError: If the next attempt would start past the budget
            RetryCanceledError: If the cancel event is set before or during the wait
        """
        delay = self.policy.get_delay(self.attempt)
        self.attempt += 1

        if self.elapsed + delay > self.budget:
            raise RetryTimeoutError(
                f"{description} did not succeed within {self.budget:.0f}s "
                f"after {self.attempt} attempts: {last_error}",
                cause=last_error
            ) from last_error

        logger.warning(
            f"{description} attempt {self.attempt} failed: {describe_error(last_error)}. "
            f"Retrying in {delay:.2f}s...",
            extra={'attempt': self.attempt}
        )

        # Event.wait returns True as soon as the event is set
        if self.cancel_event.wait(delay):
            raise RetryCanceledError(f"{description} was canceled")


def describe_error(error: Exception) -> str:
    """Extract useful error information for logging.

    Args:
        error: The exception

    Returns:
        Human-readable error description
    """
    response = getattr(error, 'response', None)
    if isinstance(response, dict) and 'Error' in response:
        error_code = response['Error'].get('Code', 'Unknown')
        error_message = response['Error'].get('Message', str(error))
        return f"{error_code}: {error_message}"

    return f"{type(error).__name__}: {str(error)}"


def execute_with_retry(
    func: Callable[..., T],
    *args,
    policy: Optional[RetryPolicy] = None,
    cancel_event: Optional[threading.Event] = None,
    description: str = "Operation",
    **kwargs
) -> T:
    """Execute a call that needs no change token, retrying transient failures.

    Used for reads (Get*/List*) which may be throttled but never go stale.

    Args:
        func: Function to execute
        *args: Positional arguments for the function
        policy: Retry policy (defaults to RetryPolicy())
        cancel_event: Event that aborts the loop when set
        description: Name used in log and error messages
        **kwargs: Keyword arguments for the function

    Returns:
        Result of the function call

    Raises:
        RetryTimeoutError: If the budget is exhausted
        RetryCanceledError: If canceled while waiting
        Exception: The first non-retryable error, unchanged
    """
    backoff = Backoff(policy or RetryPolicy(), cancel_event=cancel_event)

    while True:
        if backoff.canceled:
            raise RetryCanceledError(f"{description} was canceled")
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            if not backoff.policy.is_retryable(e):
                logger.debug(f"{description} failed with non-retryable error: {describe_error(e)}")
                raise
            backoff.wait(e, description)
            continue

        if backoff.attempt > 0:
            logger.info(f"{description} succeeded after {backoff.attempt} retries")
        return result
