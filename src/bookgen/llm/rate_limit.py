"""Sliding-window request throttle keyed by caller."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict

from ..config import RateLimitConfig

__all__ = ["RateLimiter"]

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class RateLimiter:
    """Admit at most ``requests_per_minute`` calls per key in any trailing window.

    Each key keeps the timestamps of its admitted requests. ``wait`` drops
    entries older than the window and, while the window is full, sleeps until
    the oldest entry leaves it (plus a safety margin) before recording the new
    request. Keys are serialised with their own lock so two coroutines sharing
    a key cannot both claim the last free slot.
    """

    def __init__(
        self,
        requests_per_minute: int = 15,
        *,
        window_seconds: float = 60.0,
        safety_margin_seconds: float = 1.0,
        clock: Clock | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        if requests_per_minute < 1:
            raise ValueError("requests_per_minute must be at least 1")
        self.limit = requests_per_minute
        self.window = window_seconds
        self.margin = safety_margin_seconds
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._history: Dict[str, Deque[float]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @classmethod
    def from_config(cls, config: RateLimitConfig, **kwargs) -> "RateLimiter":
        return cls(
            config.requests_per_minute,
            window_seconds=config.window_seconds,
            safety_margin_seconds=config.safety_margin_seconds,
            **kwargs,
        )

    def _prune(self, history: Deque[float], now: float) -> None:
        while history and now - history[0] >= self.window:
            history.popleft()

    def in_window(self, key: str) -> int:
        history = self._history.get(key)
        if not history:
            return 0
        self._prune(history, self._clock())
        return len(history)

    async def wait(self, key: str = "default") -> float:
        """Block until ``key`` may issue a request; returns the seconds slept."""

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            history = self._history.setdefault(key, deque())
            waited = 0.0
            while True:
                now = self._clock()
                self._prune(history, now)
                if len(history) < self.limit:
                    break
                delay = max(self.window - (now - history[0]) + self.margin, 0.0)
                logger.info("Rate limit reached for %s; waiting %.1fs", key, delay)
                await self._sleep(delay)
                waited += delay
            history.append(self._clock())
            return waited

    def reset(self, key: str | None = None) -> None:
        """Forget a key (or every key); locks still held by a waiter are kept."""

        keys = list({*self._history, *self._locks}) if key is None else [key]
        for name in keys:
            self._history.pop(name, None)
            lock = self._locks.get(name)
            if lock is not None and not lock.locked():
                del self._locks[name]
