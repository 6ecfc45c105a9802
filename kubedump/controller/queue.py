"""Rate-limited work queue for controller jobs.

Semantics follow the Kubernetes controller work queue:

- an item already waiting is not queued twice (the *dirty* set);
- an item being processed is not handed to a second worker; if it is added
  again meanwhile, it is requeued when :meth:`WorkQueue.done` is called;
- :meth:`WorkQueue.get` returns ``None`` once the queue is shut down and empty.

Requeues go through a rate limiter combining per-item exponential backoff
with a global token bucket.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Hashable
from typing import Generic, TypeVar

T = TypeVar("T", bound=Hashable)

_DEFAULT_BASE_DELAY = 0.005
_DEFAULT_MAX_DELAY = 1000.0


class RateLimiter:
    """Decides how long an item waits before it is requeued."""

    def when(self, item: Hashable) -> float:
        raise NotImplementedError

    def forget(self, item: Hashable) -> None:
        raise NotImplementedError

    def num_requeues(self, item: Hashable) -> int:
        raise NotImplementedError


class ItemExponentialFailureRateLimiter(RateLimiter):
    """``base_delay * 2**failures``, capped at ``max_delay``."""

    def __init__(self, base_delay: float = _DEFAULT_BASE_DELAY, max_delay: float = _DEFAULT_MAX_DELAY) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._failures: dict[Hashable, int] = {}

    def when(self, item: Hashable) -> float:
        failures = self._failures.get(item, 0)
        self._failures[item] = failures + 1
        # Cap the exponent before computing to avoid float overflow.
        if failures > 62:
            return self._max_delay
        return min(self._base_delay * (2**failures), self._max_delay)

    def forget(self, item: Hashable) -> None:
        self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        return self._failures.get(item, 0)


class BucketRateLimiter(RateLimiter):
    """Token bucket shared by every item: ``qps`` refill rate, ``burst`` capacity."""

    def __init__(self, qps: float = 10.0, burst: int = 100) -> None:
        self._qps = qps
        self._burst = float(burst)
        self._tokens = float(burst)
        self._last = time.monotonic()

    def when(self, item: Hashable) -> float:
        now = time.monotonic()
        self._tokens = min(self._burst, self._tokens + (now - self._last) * self._qps)
        self._last = now
        self._tokens -= 1.0
        if self._tokens >= 0:
            return 0.0
        return -self._tokens / self._qps

    def forget(self, item: Hashable) -> None:
        pass

    def num_requeues(self, item: Hashable) -> int:
        return 0


class MaxOfRateLimiter(RateLimiter):
    """The longest delay any of the wrapped limiters asks for."""

    def __init__(self, *limiters: RateLimiter) -> None:
        self._limiters = limiters

    def when(self, item: Hashable) -> float:
        return max((limiter.when(item) for limiter in self._limiters), default=0.0)

    def forget(self, item: Hashable) -> None:
        for limiter in self._limiters:
            limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return max((limiter.num_requeues(item) for limiter in self._limiters), default=0)


def default_controller_rate_limiter(qps: float = 10.0, burst: int = 100) -> RateLimiter:
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(_DEFAULT_BASE_DELAY, _DEFAULT_MAX_DELAY),
        BucketRateLimiter(qps, burst),
    )


class WorkQueue(Generic[T]):
    """FIFO work queue safe for use by many asyncio worker tasks."""

    def __init__(self, rate_limiter: RateLimiter | None = None) -> None:
        self._rate_limiter = rate_limiter or default_controller_rate_limiter()
        self._queue: deque[T] = deque()
        self._dirty: set[T] = set()
        self._processing: set[T] = set()
        self._getters: deque[asyncio.Future[None]] = deque()
        self._timers: set[asyncio.TimerHandle] = set()
        self._shutting_down = False
        self._drained = asyncio.Event()

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def add(self, item: T) -> None:
        """Queue *item* unless it is already waiting; ignored after shutdown."""
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._wake_one()

    def add_after(self, item: T, delay: float) -> None:
        """Queue *item* once *delay* seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        loop = asyncio.get_running_loop()

        def _fire() -> None:
            self._timers.discard(handle)
            self.add(item)

        handle = loop.call_later(delay, _fire)
        self._timers.add(handle)

    def add_rate_limited(self, item: T) -> None:
        self.add_after(item, self._rate_limiter.when(item))

    def forget(self, item: T) -> None:
        """Stop tracking retries for *item*; call after it finally succeeds or is abandoned."""
        self._rate_limiter.forget(item)

    def num_requeues(self, item: T) -> int:
        return self._rate_limiter.num_requeues(item)

    # ------------------------------------------------------------------
    # Consumers
    # ------------------------------------------------------------------

    async def get(self) -> T | None:
        """Wait for the next item; ``None`` means the queue is shut down and empty."""
        while not self._queue and not self._shutting_down:
            waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._getters.append(waiter)
            try:
                await waiter
            except asyncio.CancelledError:
                if waiter in self._getters:
                    self._getters.remove(waiter)
                elif self._queue:
                    # This waiter was woken for an item it will never take.
                    self._wake_one()
                raise

        if not self._queue:
            return None

        item = self._queue.popleft()
        self._processing.add(item)
        self._dirty.discard(item)
        return item

    def done(self, item: T) -> None:
        """Mark *item* finished; requeue it if it was added while processing."""
        self._processing.discard(item)
        if item in self._dirty:
            self._queue.append(item)
            self._wake_one()
        self._check_drained()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        """Refuse new items and release every waiting consumer.

        Items already queued are still handed out by :meth:`get`.
        """
        self._shutting_down = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        while self._getters:
            waiter = self._getters.popleft()
            if not waiter.done():
                waiter.set_result(None)
        self._check_drained()

    async def shutdown_with_drain(self) -> None:
        """Shut down, then wait until every queued and in-flight item is done."""
        self.shutdown()
        await self._drained.wait()

    def _wake_one(self) -> None:
        while self._getters:
            waiter = self._getters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return

    def _check_drained(self) -> None:
        if self._shutting_down and not self._queue and not self._processing:
            self._drained.set()
