"""Concurrency Scheduler — FIFO dispatch gated by concurrency, rate and throttle.

A queued task starts only when all of these allow it:
  - fewer than ``max_concurrent`` tasks are running
  - any scheduler-wide temporary throttle window has passed
  - a uniformly random jitter delay (``jitter_ms`` range) has elapsed
  - the token bucket hands out a token

Tasks start in submission order; they may finish in any order. A task whose
abort signal fires while it is still queued is dropped from the queue and
rejected with ``Aborted`` without consuming a slot or a token. One that fires
while the task waits out the throttle, jitter or token bucket ends the wait
at once and frees the slot.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from translate_gateway.core import metrics
from translate_gateway.gateway.errors import Aborted, SchedulerClosed
from translate_gateway.gateway.jobs import AbortController
from translate_gateway.gateway.rate_limiter import TokenBucket
from translate_gateway.gateway.types import SchedulerStats

logger = logging.getLogger(__name__)

# Throttle waits are sliced so a shortened/extended window is noticed
THROTTLE_SLICE_MIN = 0.05
THROTTLE_SLICE_MAX = 2.0


@dataclass(eq=False)
class _QueuedTask:
    """A submitted task waiting for a slot."""

    task: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    signal: AbortController | None = None
    unsubscribe: Callable[[], None] = field(default=lambda: None)


class ConcurrencyScheduler:
    """Process-wide dispatcher for provider calls.

    Usage:
        scheduler = ConcurrencyScheduler(max_concurrent=2, rps=1, burst=2, jitter_ms=(50, 200))

        result = await scheduler.enqueue(lambda: call_provider(...), signal=controller)

        scheduler.update_config(max_concurrent=4, rps=3)   # live, queue kept
        scheduler.throttle_temporarily(60_000)             # pause new starts
        scheduler.close()                                  # reject queued work
    """

    def __init__(
        self,
        max_concurrent: int = 2,
        rps: float = 1.0,
        burst: float = 2,
        jitter_ms: tuple[int, int] | int = (50, 200),
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.limiter = TokenBucket(rps=rps, burst=burst, clock=clock, sleep=sleep)
        self.max_concurrent = max(1, int(max_concurrent))
        self.jitter_min, self.jitter_max = 50, 200
        self._set_jitter(jitter_ms)

        self._queue: deque[_QueuedTask] = deque()
        self._running = 0
        self._throttle_until = 0.0  # clock() seconds; 0 = inactive
        self._closed = False
        self._runners: set[asyncio.Future] = set()  # Strong refs to dispatched tasks

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def _set_jitter(self, jitter_ms: tuple[int, int] | list[int] | int | None) -> None:
        if jitter_ms is None:
            return
        if isinstance(jitter_ms, int | float):
            self.jitter_min, self.jitter_max = 0, max(0, int(jitter_ms))
            return
        lo = max(0, int(jitter_ms[0]))
        hi = max(lo, int(jitter_ms[1]))
        self.jitter_min, self.jitter_max = lo, hi

    def update_config(
        self,
        max_concurrent: int | None = None,
        rps: float | None = None,
        burst: float | None = None,
        jitter_ms: tuple[int, int] | list[int] | int | None = None,
    ) -> None:
        """Live reconfiguration. Queued tasks keep their order."""
        if max_concurrent is not None:
            self.max_concurrent = max(1, int(max_concurrent))
        self.limiter.set_rate(
            rps if rps is not None else self.limiter.rps,
            burst if burst is not None else self.limiter.capacity,
        )
        self._set_jitter(jitter_ms)
        logger.info(
            "Scheduler reconfigured: max_concurrent=%d rps=%.3f burst=%d jitter=%d..%dms",
            self.max_concurrent,
            self.limiter.rps,
            self.limiter.capacity,
            self.jitter_min,
            self.jitter_max,
        )
        # A higher concurrency cap may allow queued work to start now
        self._pump()

    def throttle_temporarily(self, duration_ms: int = 60_000) -> None:
        """Delay every task start until ``duration_ms`` from now (last call wins)."""
        self._throttle_until = self._clock() + max(0, int(duration_ms)) / 1000.0
        metrics.THROTTLE_ACTIVATIONS.inc()
        logger.warning("Scheduler throttled for %dms", max(0, int(duration_ms)))

    @property
    def closed(self) -> bool:
        return self._closed

    def stats(self) -> SchedulerStats:
        remaining = max(0.0, self._throttle_until - self._clock()) if self._throttle_until else 0.0
        return SchedulerStats(
            running=self._running,
            queued=len(self._queue),
            max_concurrent=self.max_concurrent,
            effective_rate=self.limiter.rps,
            burst_capacity=self.limiter.capacity,
            throttled_for_ms=int(remaining * 1000),
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        task: Callable[[], Awaitable[Any]],
        signal: AbortController | None = None,
    ) -> Any:
        """Queue ``task`` and wait for its result."""
        if self._closed:
            raise SchedulerClosed()

        loop = asyncio.get_running_loop()
        item = _QueuedTask(task=task, future=loop.create_future(), signal=signal)
        self._queue.append(item)

        if signal is not None:
            item.unsubscribe = signal.add_callback(lambda: self._drop_aborted(item))

        self._pump()
        self._update_gauges()
        return await item.future

    def _drop_aborted(self, item: _QueuedTask) -> None:
        """Abort callback: reject a task that has not started yet."""
        try:
            self._queue.remove(item)
        except ValueError:
            return  # Already started; the running call is cancelled by its controller
        if not item.future.done():
            item.future.set_exception(Aborted())
        self._update_gauges()

    def close(self) -> None:
        """Stop accepting work and reject everything still queued."""
        self._closed = True
        rejected = 0
        while self._queue:
            item = self._queue.popleft()
            item.unsubscribe()
            if not item.future.done():
                item.future.set_exception(SchedulerClosed())
                rejected += 1
        self._update_gauges()
        logger.info("Scheduler closed (%d queued tasks rejected, %d running)", rejected, self._running)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _pump(self) -> None:
        if self._closed:
            return
        while self._running < self.max_concurrent and self._queue:
            item = self._queue.popleft()
            item.unsubscribe()
            if item.future.done():
                continue
            if item.signal is not None and item.signal.aborted:
                item.future.set_exception(Aborted())
                continue
            self._running += 1
            runner = asyncio.ensure_future(self._run_one(item))
            self._runners.add(runner)
            runner.add_done_callback(self._runners.discard)
        self._update_gauges()

    async def _run_one(self, item: _QueuedTask) -> None:
        try:
            if item.signal is not None:
                # Cancelling the signal interrupts the pre-start waits
                await item.signal.run(self._before_start())
            else:
                await self._before_start()
            result = await item.task()
        except asyncio.CancelledError:
            if not item.future.done():
                if item.signal is not None and item.signal.aborted:
                    item.future.set_exception(Aborted())
                else:
                    item.future.cancel()
            raise
        except Exception as e:
            # Delivered to the caller awaiting enqueue()
            if not item.future.done():
                item.future.set_exception(e)
        else:
            if not item.future.done():
                item.future.set_result(result)
        finally:
            self._running -= 1
            self._pump()

    async def _before_start(self) -> None:
        await self._wait_throttle()
        jitter = self._jitter_delay()
        if jitter:
            await self._sleep(jitter)
        await self.limiter.take(1)

    async def _wait_throttle(self) -> None:
        while True:
            remaining = self._throttle_until - self._clock()
            if remaining <= 0:
                return
            await self._sleep(min(max(remaining, THROTTLE_SLICE_MIN), THROTTLE_SLICE_MAX))

    def _jitter_delay(self) -> float:
        if self.jitter_max <= 0:
            return 0.0
        return self._rng.randint(self.jitter_min, self.jitter_max) / 1000.0

    def _update_gauges(self) -> None:
        metrics.SCHEDULER_RUNNING.set(self._running)
        metrics.SCHEDULER_QUEUED.set(len(self._queue))
