"""
Retry manager for executing store operations with exponential backoff.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tarlift.core.retry.policy import DEFAULT_RETRY_POLICY, RetryPolicy, RetryState
from tarlift.exceptions import RetryExhaustedError
from tarlift.utils.logging import get_logger

logger = get_logger("tarlift.retry.manager")

T = TypeVar("T")


class RetryManager:
    """
    Wraps a single network operation with retry logic based on a RetryPolicy.

    Transient errors are retried with backoff; once the attempt ceiling is
    reached the last one is raised as RetryExhaustedError. Anything the
    policy does not consider transient propagates unchanged on the first
    occurrence.

    Examples:
        >>> manager = RetryManager(RetryPolicy(max_attempts=5))
        >>> info = await manager.execute(lambda: store.info(path), operation="HEAD /a/b")
    """

    def __init__(self, policy: RetryPolicy | None = None, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        """
        Initialize RetryManager.

        Args:
            policy: Retry policy (defaults to DEFAULT_RETRY_POLICY)
            sleep: Awaitable used between attempts (tests substitute a no-op)
        """
        self.policy = policy or DEFAULT_RETRY_POLICY
        self._sleep = sleep
        self.retries = 0

    async def execute(
        self,
        func: Callable[[], Awaitable[T]],
        *,
        operation: str | None = None,
        state: RetryState | None = None,
    ) -> T:
        """
        Execute an async operation with retry logic.

        Args:
            func: Zero-argument callable returning a fresh awaitable per attempt
            operation: Label for logs and errors
            state: Optional RetryState to record history into

        Returns:
            Result of the first successful attempt

        Raises:
            RetryExhaustedError: A transient error persisted past the attempt ceiling
            Exception: Any non-transient error, unchanged
        """
        policy = self.policy
        state = state or RetryState(operation=operation or getattr(func, "__name__", "operation"))

        for attempt in range(policy.max_attempts + 1):
            state.attempt = attempt

            try:
                result = await func()
            except Exception as e:
                state.record_attempt(exception=e)

                if not policy.should_retry(e, attempt):
                    state.mark_failure(e)
                    if policy.is_transient(e) and attempt >= policy.max_attempts:
                        logger.error(f"{state.operation} failed after {attempt + 1} attempts: {e}")
                        raise RetryExhaustedError(state.operation, attempt + 1, e) from e
                    raise

                delay = policy.get_delay(attempt)
                state.record_delay(delay)
                self.retries += 1

                logger.warning(f"{state.operation} attempt {attempt + 1} failed: {e}. Retrying in {delay:.2f}s...")

                await self._sleep(delay)
                continue

            state.record_attempt()
            state.mark_success()
            if attempt > 0:
                logger.info(f"{state.operation} succeeded after {attempt + 1} attempts")
            return result

        # Should not reach here, but just in case
        raise RuntimeError(f"Retry logic error for {state.operation}")
