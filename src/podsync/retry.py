"""Retry policies for transient I/O failures, built on tenacity."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import logging
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_incrementing,
)
from tenacity.wait import wait_base

logger = logging.getLogger(__name__)


def exponential_backoff(base_seconds: float = 1.0) -> wait_base:
    """Return a wait of ``base * 2**(attempt - 1)``: 1s, 2s, 4s, ..."""
    return wait_exponential(multiplier=base_seconds)


def linear_backoff(step_seconds: float = 2.0) -> wait_base:
    """Return a wait of ``attempt * step``: 2s, 4s, 6s, ..."""
    return wait_incrementing(start=step_seconds, increment=step_seconds)


def _always_retry(_: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry an operation.

    Attributes:
        max_attempts: Total attempts, including the first.
        backoff: tenacity wait strategy between attempts.
        is_retryable: Whether an exception is worth another attempt.
        sleep: Awaitable sleep, replaceable in tests.
    """

    max_attempts: int = 3
    backoff: wait_base = field(default_factory=exponential_backoff)
    is_retryable: Callable[[BaseException], bool] = _always_retry
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def _retrying(self, log_params: dict[str, Any]) -> AsyncRetrying:
        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                "Attempt failed, retrying.",
                extra={
                    **log_params,
                    "attempt": retry_state.attempt_number,
                    "max_attempts": self.max_attempts,
                    "retry_in_seconds": delay,
                    "error": str(error),
                },
            )

        return AsyncRetrying(
            sleep=self.sleep,
            stop=stop_after_attempt(self.max_attempts),
            wait=self.backoff,
            retry=retry_if_exception(self.is_retryable),
            before_sleep=log_retry,
            reraise=True,
        )

    async def run[T](
        self,
        operation: Callable[[], Awaitable[T]],
        log_params: dict[str, Any] | None = None,
    ) -> T:
        """Await ``operation()``, retrying retryable failures.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt.
            log_params: Extra fields for retry log records.

        Returns:
            The result of the first successful attempt.

        Raises:
            Exception: The last exception, once attempts are exhausted or an
                exception is not retryable.
        """
        return await self._retrying(log_params or {})(operation)
