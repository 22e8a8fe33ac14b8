"""Linear-backoff retry policy built on tenacity."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from ..config import RetryConfig
from ..errors import RetriesExhausted, TooShortResponse, TransientBackendError
from .providers import ProviderError

__all__ = ["RetryPolicy", "RETRYABLE_ERRORS"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (
    TransientBackendError,
    TooShortResponse,
    ProviderError,
)


@dataclass(slots=True)
class RetryPolicy:
    """Run an async operation up to ``max_attempts`` times.

    The wait before attempt ``n + 1`` is ``base_delay * n``. Only errors in
    ``retry_on`` are retried; anything else propagates immediately. When the
    budget is spent a :class:`RetriesExhausted` is raised chained to the last
    failure.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    retry_on: Tuple[Type[BaseException], ...] = RETRYABLE_ERRORS
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    @classmethod
    def from_config(cls, config: RetryConfig, **kwargs) -> "RetryPolicy":
        return cls(max_attempts=config.max_attempts, base_delay=config.base_delay_seconds, **kwargs)

    def backoff(self, attempt: int) -> float:
        return self.base_delay * attempt

    async def run(self, operation: Callable[[int], Awaitable[T]], *, label: str = "operation") -> T:
        def _log_retry(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            logger.warning(
                "%s attempt %d/%d failed (%s); retrying in %.1fs",
                label,
                state.attempt_number,
                self.max_attempts,
                error,
                state.next_action.sleep if state.next_action else 0.0,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.base_delay, increment=self.base_delay),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=_log_retry,
            sleep=self.sleep,
            reraise=False,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    result = await operation(attempt.retry_state.attempt_number)
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            logger.error("%s failed after %d attempt(s): %s", label, self.max_attempts, last_error)
            raise RetriesExhausted(self.max_attempts, last_error) from last_error
        return result
