"""Change-token serialized retries for WAF Classic mutations.

Every mutating WAF Classic request (create, update, delete) must carry a
change token obtained from ``GetChangeToken``. A token is valid for a single
request and is invalidated as soon as anyone in the account fetches a newer
one, so concurrent writers routinely see ``WAFStaleDataException``. The
retryer pairs each attempt with a freshly fetched token and repeats the
fetch+call cycle on transient failures until it succeeds, a non-retryable
error occurs, the caller cancels, or the policy's time budget runs out.

There is no local lock: the WAF API is the only point of serialization.
"""

import threading
import time
from typing import Callable, TypeVar, Optional

from waf_deploy.utils.errors import (
    ErrorCategory,
    ErrorContext,
    FatalOperationError,
    RetryCanceledError,
    WAFDeployError,
    error_handler,
)
from waf_deploy.utils.logging import get_logger
from waf_deploy.utils.retry import Backoff, RetryPolicy, describe_error

logger = get_logger(__name__)

T = TypeVar('T')

Operation = Callable[[str], T]


class ChangeTokenRetryer:
    """Runs token-guarded WAF operations with retry-on-conflict."""

    def __init__(
        self,
        client,
        policy: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """Initialize retryer.

        Args:
            client: boto3 ``waf`` or ``waf-regional`` client (anything with
                ``get_change_token``)
            policy: Retry policy; defaults to a 15 minute budget
            clock: Monotonic time source
        """
        self.client = client
        self.policy = policy or RetryPolicy()
        self.clock = clock

    def fetch_token(self) -> str:
        """Fetch a new change token from WAF."""
        response = self.client.get_change_token()
        return response['ChangeToken']

    def get_change_token_status(self, token: str) -> str:
        """Return PROVISIONED, PENDING or INSYNC for a change token."""
        response = self.client.get_change_token_status(ChangeToken=token)
        return response['ChangeTokenStatus']

    def retry_with_token(
        self,
        operation: Operation,
        operation_name: Optional[str] = None,
        resource_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None
    ) -> T:
        """Call ``operation`` with a fresh change token until it succeeds.

        Args:
            operation: Callable taking the change token and performing one
                mutating request; may be invoked more than once
            operation_name: Name used in logs and error annotations
            resource_id: Target identifier used in logs and error annotations
            cancel_event: Event that aborts the loop as soon as it is set
            timeout: Budget in seconds overriding the policy's max_duration

        Returns:
            Whatever ``operation`` returned on the successful attempt

        Raises:
            FatalOperationError: On the first non-retryable error from the
                token fetch or the operation (original error in ``cause``)
            RetryTimeoutError: When the budget is exhausted; wraps the last
                retryable error
            RetryCanceledError: When ``cancel_event`` is set
        """
        description = operation_name or getattr(operation, '__name__', 'operation')
        backoff = Backoff(self.policy, cancel_event=cancel_event,
                          timeout=timeout, clock=self.clock)
        log_extra = {'operation': description}

        while True:
            if backoff.canceled:
                raise RetryCanceledError(
                    f"{description} was canceled",
                    context=self._context(description, resource_id)
                )

            try:
                token = self.fetch_token()
            except Exception as e:
                if not self.policy.is_retryable(e):
                    raise self._fatal("GetChangeToken", description, resource_id, e) from e
                self._wait(backoff, e, description, resource_id)
                continue

            logger.debug(f"{description} attempt {backoff.attempt + 1} using change token {token}",
                         extra=log_extra)

            try:
                result = operation(token)
            except Exception as e:
                if not self.policy.is_retryable(e):
                    raise self._fatal(description, description, resource_id, e) from e
                self._wait(backoff, e, description, resource_id)
                continue

            if backoff.attempt > 0:
                logger.info(f"{description} succeeded after {backoff.attempt} retries",
                            extra=log_extra)
            return result

    def _wait(self, backoff: Backoff, error: Exception, description: str,
              resource_id: Optional[str]) -> None:
        try:
            backoff.wait(error, description)
        except WAFDeployError as e:
            e.context = self._context(description, resource_id)
            raise

    def _fatal(self, failed_call: str, description: str, resource_id: Optional[str],
               error: Exception) -> FatalOperationError:
        target = f" ({resource_id})" if resource_id else ""
        logger.debug(f"{failed_call} failed with non-retryable error: {describe_error(error)}")
        context = self._context(description, resource_id)
        context.aws_operation = failed_call
        # Fills error_code and request_id on context for AWS errors
        details = error_handler.handle_exception(error, context)
        category = details.category if details.category is not ErrorCategory.UNKNOWN else None
        return FatalOperationError(
            f"{description}{target} failed: {describe_error(error)}",
            category=category,
            context=context,
            cause=error,
            suggestions=list(details.suggestions)
        )

    def _context(self, description: str, resource_id: Optional[str]) -> ErrorContext:
        meta = getattr(self.client, 'meta', None)
        service_model = getattr(meta, 'service_model', None)
        return ErrorContext(
            resource_id=resource_id,
            operation=description,
            aws_service=getattr(service_model, 'service_name', 'waf')
        )
