from __future__ import annotations

import pytest

from bookgen.config import RetryConfig
from bookgen.errors import RetriesExhausted, TooShortResponse, TransientBackendError
from bookgen.llm.retry import RetryPolicy


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.mark.asyncio
async def test_retries_transient_errors_with_linear_backoff() -> None:
    sleep = RecordingSleep()
    policy = RetryPolicy(max_attempts=3, base_delay=2.0, sleep=sleep)
    attempts: list[int] = []

    async def operation(attempt: int) -> str:
        attempts.append(attempt)
        if attempt < 3:
            raise TransientBackendError("empty reply")
        return "done"

    assert await policy.run(operation, label="chapter-1") == "done"
    assert attempts == [1, 2, 3]
    assert sleep.calls == [2.0, 4.0]


@pytest.mark.asyncio
async def test_exhaustion_raises_with_last_error_as_cause() -> None:
    sleep = RecordingSleep()
    policy = RetryPolicy(max_attempts=3, base_delay=1.0, sleep=sleep)
    calls = 0

    async def operation(attempt: int) -> str:
        nonlocal calls
        calls += 1
        raise TooShortResponse(10 * attempt, 1800)

    with pytest.raises(RetriesExhausted) as excinfo:
        await policy.run(operation)

    assert calls == 3
    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value.__cause__, TooShortResponse)
    assert excinfo.value.last_error.length == 30
    assert sleep.calls == [1.0, 2.0]


@pytest.mark.asyncio
async def test_non_retryable_errors_propagate_immediately() -> None:
    sleep = RecordingSleep()
    policy = RetryPolicy(max_attempts=5, sleep=sleep)
    calls = 0

    async def operation(attempt: int) -> str:
        nonlocal calls
        calls += 1
        raise KeyError("bug")

    with pytest.raises(KeyError):
        await policy.run(operation)

    assert calls == 1
    assert sleep.calls == []


def test_from_config_uses_retry_budget() -> None:
    policy = RetryPolicy.from_config(RetryConfig(max_attempts=4, base_delay_seconds=0.5))

    assert policy.max_attempts == 4
    assert policy.base_delay == 0.5
    assert [policy.backoff(n) for n in (1, 2, 3)] == [0.5, 1.0, 1.5]
