"""
Rate Limiter
------------
Token bucket rate limiter for outgoing API calls.

Design:
- Capacity = rate (at least one token), refilled continuously at `rate` tokens/s
- The bucket starts with a single token, so a cold client cannot burst
- A rolling one-second window caps grants at floor(rate) (at least one),
  so a refilled bucket can never push a second past the limit
- acquire() never rejects; it only delays the caller
- Nothing is reserved while a caller sleeps, so cancelling a waiter
  leaves the bucket untouched
- One instance per client; never shared across API keys
"""

from collections import deque
from contextlib import asynccontextmanager
from threading import Lock
from typing import Any, AsyncIterator, Callable, Deque, Dict, Optional, Tuple
import asyncio
import math
import time

from ..core.errors import ConfigurationError
from ..infra.logging import get_logger

WINDOW_SECONDS = 1.0


class Permit:
    """One token taken from the bucket for a single send attempt."""

    __slots__ = ("granted_at", "sent")

    def __init__(self, granted_at: float):
        self.granted_at = granted_at
        self.sent = False

    def mark_sent(self) -> None:
        """Record that the request is being handed to the transport."""
        self.sent = True


class RateLimiter:
    """
    Token bucket rate limiter.

    Thread-safe and task-safe: the bucket state sits behind one lock and the
    critical section never awaits.
    """

    def __init__(
        self,
        rate: float,
        capacity: Optional[float] = None,
        initial_tokens: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate <= 0:
            raise ConfigurationError(f"Rate must be a positive number, got {rate!r}")

        self._rate = float(rate)
        self._capacity = float(capacity) if capacity is not None else max(self._rate, 1.0)
        if self._capacity < 1.0:
            raise ConfigurationError(f"Capacity must be at least 1, got {capacity!r}")
        if initial_tokens < 0:
            raise ConfigurationError(f"initial_tokens must be non-negative, got {initial_tokens!r}")

        self._window_limit = max(1, int(math.floor(self._rate)))
        self._clock = clock
        self._tokens = min(float(initial_tokens), self._capacity)
        self._last_update = clock()
        self._grants: Deque[float] = deque()
        self._lock = Lock()
        self._logger = get_logger("api.rate_limiter")

        self._granted = 0
        self._refunded = 0
        self._waiting = 0

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def window_limit(self) -> int:
        """Most grants allowed inside any rolling one-second window."""
        return self._window_limit

    def _refill(self, now: float) -> None:
        """Refill tokens and expire old grants. Caller holds the lock."""
        elapsed = max(0.0, now - self._last_update)
        self._last_update = now
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)

        while self._grants and self._grants[0] <= now - WINDOW_SECONDS:
            self._grants.popleft()

    def _take_or_wait(self) -> Tuple[float, float]:
        """
        Take a token, or report how long until one is due.

        Returns (0, grant_time) on success, (wait_seconds, now) otherwise.
        """
        with self._lock:
            now = self._clock()
            self._refill(now)

            bucket_wait = 0.0
            if self._tokens < 1.0:
                bucket_wait = (1.0 - self._tokens) / self._rate

            window_wait = 0.0
            if len(self._grants) >= self._window_limit:
                window_wait = self._grants[0] + WINDOW_SECONDS - now

            wait = max(bucket_wait, window_wait)
            if wait > 0.0:
                return wait, now

            self._tokens = max(0.0, self._tokens - 1.0)
            self._grants.append(now)
            self._granted += 1
            return 0.0, now

    async def acquire(self, timeout: Optional[float] = None) -> Permit:
        """
        Acquire a token for making a request.
        Suspends the caller until a token is available.

        Args:
            timeout: Longest wait in seconds; None waits indefinitely

        Raises:
            asyncio.TimeoutError: If no token became available within timeout
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        while True:
            wait, now = self._take_or_wait()
            if wait <= 0.0:
                return Permit(now)

            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0.0:
                    raise asyncio.TimeoutError(f"No rate-limit token within {timeout:g}s")
                wait = min(wait, remaining)

            with self._lock:
                self._waiting += 1
            try:
                await asyncio.sleep(wait)
            finally:
                with self._lock:
                    self._waiting -= 1

    def try_acquire(self) -> Optional[Permit]:
        """
        Try to acquire a token without waiting.
        Returns a Permit if a token was available, None otherwise.
        """
        wait, now = self._take_or_wait()
        return Permit(now) if wait <= 0.0 else None

    def release(self, permit: Permit) -> None:
        """Return a token whose permit was never used to send a request."""
        if permit.sent:
            raise ValueError("A permit used to send a request cannot be refunded")

        with self._lock:
            self._refill(self._clock())
            self._tokens = min(self._capacity, self._tokens + 1.0)
            try:
                self._grants.remove(permit.granted_at)
            except ValueError:
                pass  # Already aged out of the window
            self._refunded += 1

    @asynccontextmanager
    async def permit(self, timeout: Optional[float] = None) -> AsyncIterator[Permit]:
        """
        Acquire a permit for one send attempt.

        The holder calls permit.mark_sent() right before sending. A permit
        left unsent when the block exits (error or cancellation before the
        send) is refunded.

        Raises:
            asyncio.TimeoutError: If no token became available within timeout
        """
        permit = await self.acquire(timeout)

        try:
            yield permit
        finally:
            if not permit.sent:
                self.release(permit)
                self._logger.debug("Refunded unsent permit")

    @property
    def available_tokens(self) -> float:
        """Get current available tokens."""
        with self._lock:
            self._refill(self._clock())
            return self._tokens

    def reset(self) -> None:
        """Reset the rate limiter to a full bucket and an empty window."""
        with self._lock:
            self._tokens = self._capacity
            self._last_update = self._clock()
            self._grants.clear()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            self._refill(self._clock())
            return {
                "rate": self._rate,
                "capacity": self._capacity,
                "window_limit": self._window_limit,
                "available_tokens": self._tokens,
                "granted": self._granted,
                "refunded": self._refunded,
                "waiting": self._waiting,
            }
