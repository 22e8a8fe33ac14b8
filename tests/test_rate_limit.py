from __future__ import annotations

import asyncio

import pytest

from bookgen.config import RateLimitConfig
from bookgen.llm.rate_limit import RateLimiter


class FakeClock:
    """Manual clock whose ``sleep`` advances time instead of blocking."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _limiter(clock: FakeClock, limit: int, *, margin: float = 0.0) -> RateLimiter:
    return RateLimiter(limit, window_seconds=60.0, safety_margin_seconds=margin, clock=clock, sleep=clock.sleep)


@pytest.mark.asyncio
async def test_requests_under_the_limit_do_not_wait() -> None:
    clock = FakeClock()
    limiter = _limiter(clock, 3)

    waits = [await limiter.wait("s1") for _ in range(3)]

    assert waits == [0.0, 0.0, 0.0]
    assert clock.sleeps == []
    assert limiter.in_window("s1") == 3


@pytest.mark.asyncio
async def test_each_call_past_the_limit_waits_for_the_oldest_to_expire() -> None:
    clock = FakeClock()
    limiter = _limiter(clock, 5)
    admitted: list[float] = []

    for second in range(5):
        clock.now = float(second)
        assert await limiter.wait("s1") == 0.0
        admitted.append(clock())

    delays = []
    for _ in range(5):
        delays.append(await limiter.wait("s1"))
        admitted.append(clock())

    assert delays == [56.0, 1.0, 1.0, 1.0, 1.0]
    assert all(delay > 0 for delay in delays)
    for index, stamp in enumerate(admitted):
        in_window = [other for other in admitted[: index + 1] if stamp - other < 60.0]
        assert len(in_window) <= 5


@pytest.mark.asyncio
async def test_safety_margin_is_added_to_the_computed_delay() -> None:
    clock = FakeClock()
    limiter = _limiter(clock, 2, margin=1.0)

    await limiter.wait("s1")
    await limiter.wait("s1")
    waited = await limiter.wait("s1")

    assert waited == 61.0
    assert clock.now == 61.0


@pytest.mark.asyncio
async def test_keys_are_throttled_independently() -> None:
    clock = FakeClock()
    limiter = _limiter(clock, 1)

    await limiter.wait("busy")

    assert await limiter.wait("fresh") == 0.0
    assert limiter.in_window("never-used") == 0
    assert limiter.in_window("busy") == 1


@pytest.mark.asyncio
async def test_concurrent_waiters_on_one_key_are_serialised() -> None:
    clock = FakeClock()
    limiter = _limiter(clock, 1)

    waits = await asyncio.gather(*(limiter.wait("shared") for _ in range(3)))

    assert sorted(waits) == [0.0, 60.0, 60.0]
    assert clock.now == 120.0


@pytest.mark.asyncio
async def test_reset_forgets_history() -> None:
    clock = FakeClock()
    limiter = _limiter(clock, 1)
    await limiter.wait("a")
    await limiter.wait("b")

    limiter.reset("a")
    assert limiter.in_window("a") == 0
    assert limiter.in_window("b") == 1
    assert "a" not in limiter._locks

    limiter.reset()
    assert limiter.in_window("b") == 0
    assert limiter._locks == {}


def test_from_config_and_validation() -> None:
    limiter = RateLimiter.from_config(RateLimitConfig(requests_per_minute=4, safety_margin_seconds=0.5))

    assert limiter.limit == 4
    assert limiter.margin == 0.5
    with pytest.raises(ValueError):
        RateLimiter(0)


@pytest.mark.asyncio
async def test_reset_keeps_a_lock_held_by_a_waiter() -> None:
    clock = FakeClock()
    limiter = _limiter(clock, 1)
    await limiter.wait("a")

    lock = limiter._locks["a"]
    async with lock:
        limiter.reset("a")
        assert limiter._locks["a"] is lock

    limiter.reset("a")
    assert "a" not in limiter._locks
