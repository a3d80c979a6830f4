"""Guards around the messaging gateway: a circuit breaker and a send-rate limiter.

Both are shared by every sender in the process, and the scheduler runs jobs
on worker threads, so state changes happen under a lock.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque, Optional

from core.logging_config import get_logger

LOGGER = get_logger(__name__)


class CircuitBreaker:
    """
    Stops calling a gateway after repeated failures.

    ``closed`` lets calls through. After ``failure_threshold`` consecutive
    failures it goes ``open`` and rejects calls until ``recovery_timeout``
    seconds have passed. It then goes ``half_open``: the next calls are
    trial calls, and ``half_open_max_calls`` successes close it again while
    any failure reopens it.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        half_open_max_calls: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock
        self._lock = threading.Lock()

        self.state = self.CLOSED
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self.trial_successes = 0

    def _move(self, state: str) -> None:
        LOGGER.info(f"Circuit {self.name}: {self.state} -> {state}")
        self.state = state

    def can_execute(self) -> bool:
        with self._lock:
            if self.state == self.OPEN:
                if self.opened_at is None or self._clock() - self.opened_at < self.recovery_timeout:
                    return False
                self.trial_successes = 0
                self._move(self.HALF_OPEN)
            return True

    def record_success(self) -> None:
        with self._lock:
            self.failure_count = 0
            if self.state == self.HALF_OPEN:
                self.trial_successes += 1
                if self.trial_successes >= self.half_open_max_calls:
                    self._move(self.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            if self.state == self.HALF_OPEN or self.failure_count >= self.failure_threshold:
                self.opened_at = self._clock()
                if self.state != self.OPEN:
                    self._move(self.OPEN)


class RateLimiter:
    """Sliding window: at most ``max_calls`` sends per ``period_seconds``."""

    def __init__(
        self,
        max_calls: int,
        period_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_calls = max(1, max_calls)
        self.period_seconds = period_seconds
        self._clock = clock
        self._calls: Deque[float] = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        while self._calls and self._calls[0] <= now - self.period_seconds:
            self._calls.popleft()

    def can_proceed(self) -> bool:
        with self._lock:
            self._prune(self._clock())
            return len(self._calls) < self.max_calls

    def record_call(self) -> None:
        with self._lock:
            self._calls.append(self._clock())

    def wait_time(self) -> float:
        """Seconds until the oldest call in the window drops out."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._calls) < self.max_calls:
                return 0.0
            return max(0.0, self._calls[0] + self.period_seconds - now)


__all__ = ["CircuitBreaker", "RateLimiter"]
