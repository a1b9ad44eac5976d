"""
Retry Wrapper for Remote Calls

Wraps a single remote operation in bounded exponential backoff.

DESIGN DECISION: Only transient failures (rate limits, 5xx, dropped
connections) are retried. Auth errors, bad ranges, configuration and
validation errors fail on the first attempt, and after the last attempt
the original exception propagates unchanged.

Only wrap operations that are safe to repeat: a batched read, or a full
replace of a tab. Never wrap a clear and an update separately.
"""

from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from expense_sync.audit import SyncAuditLogger
from expense_sync.config import get_settings
from expense_sync.models.audit import SyncEventBuilder
from expense_sync.services.storage.interface import TransientStorageError


T = TypeVar("T")

# Jitter is up to this fraction of the base delay
JITTER_RATIO = 0.2


def is_transient_error(error: BaseException) -> bool:
    """Is this failure worth another attempt?"""
    return isinstance(error, (TransientStorageError, ConnectionError, TimeoutError))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    audit: Optional[SyncAuditLogger] = None,
) -> T:
    """
    Run `operation` with exponential backoff on transient failures.

    Args:
        operation: Zero-argument coroutine function performing the call
        max_attempts: Total attempts (defaults to SYNC_RETRY_MAX_ATTEMPTS)
        base_delay: Seconds before the second attempt; doubles each time
        max_delay: Cap for a single delay
        audit: Logger used to record scheduled retries

    Returns:
        Whatever the operation returns

    Raises:
        The operation's last exception, unchanged
    """
    settings = get_settings().sync
    max_attempts = max_attempts if max_attempts is not None else settings.retry_max_attempts
    base_delay = base_delay if base_delay is not None else settings.retry_base_delay
    max_delay = max_delay if max_delay is not None else settings.retry_max_delay
    audit = audit or SyncAuditLogger()

    def log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        audit.log(
            SyncEventBuilder.retry_scheduled(
                attempt=retry_state.attempt_number,
                delay_seconds=delay,
                error_message=str(error),
            )
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=(
            wait_exponential(multiplier=base_delay, max=max_delay)
            + wait_random(0, base_delay * JITTER_RATIO)
        ),
        retry=retry_if_exception(is_transient_error),
        before_sleep=log_retry,
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            return await operation()
