"""Retry policy — bounded retries with exponential backoff and jitter.

Backoff strategy (attempt is the 1-based retry number):
  delay = min(base * 2^(attempt-1), max_delay)
  jitter: a fresh 10..30% is drawn each attempt and the delay is picked
          uniformly from [delay - pct, delay + pct]

Classification is done on the error type (see ``errors``): cancellation,
shutdown, parse and configuration failures are never retried; an error with
a status is retried iff the status is in ``retry_on``; an error without a
status (transport failure) is retried.

``scheduled_fetch`` runs every attempt through the scheduler and, when an
attempt fails with 429/5xx, pauses the whole scheduler so that every
concurrently queued request backs off, not only the failing one.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any

from translate_gateway.core import metrics
from translate_gateway.core.config import DEFAULT_RETRY_ON, RetryConfig
from translate_gateway.gateway.errors import (
    Aborted,
    ParseFailure,
    ProviderConfigError,
    RetriesExhausted,
    SchedulerClosed,
    best_effort,
    error_status,
)
from translate_gateway.gateway.jobs import AbortController
from translate_gateway.gateway.scheduler import ConcurrencyScheduler
from translate_gateway.gateway.types import RetryEvent

logger = logging.getLogger(__name__)

# Statuses that put the whole scheduler into a temporary throttle
THROTTLE_STATUSES = frozenset({429, 500, 502, 503, 504})

_NEVER_RETRY = (Aborted, SchedulerClosed, ParseFailure, ProviderConfigError, RetriesExhausted)


@dataclass
class RetryOptions:
    """Retry knobs; ``is_retriable`` replaces the default classifier."""

    max_retries: int = 5
    base_delay_ms: int = 800
    max_delay_ms: int = 20_000
    jitter: bool = True
    retry_on: frozenset[int] = frozenset(DEFAULT_RETRY_ON)
    is_retriable: Callable[[BaseException, int], bool] | None = None
    on_retry: Callable[[RetryEvent], None] | None = None

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryOptions:
        return cls(
            max_retries=config.max_retries,
            base_delay_ms=config.base_delay_ms,
            max_delay_ms=config.max_delay_ms,
            jitter=config.jitter,
            retry_on=frozenset(config.retry_on),
        )


def compute_backoff_delay(
    attempt: int,
    base_delay_ms: int = 800,
    max_delay_ms: int = 20_000,
    jitter: bool = True,
    rng: random.Random | None = None,
) -> int:
    """Backoff delay in milliseconds for the given 1-based retry attempt."""
    rng = rng or random
    exponential = int(base_delay_ms) * (2 ** max(0, attempt - 1))
    delay = min(exponential, int(max_delay_ms))
    if jitter:
        pct = rng.randint(10, 30)
        delta = delay * pct // 100
        delay = rng.randint(delay - delta, delay + delta)
    return delay


def is_retriable_error(error: BaseException, retry_on: frozenset[int] | set[int]) -> bool:
    """Default retriability classifier."""
    if isinstance(error, _NEVER_RETRY):
        return False
    status = error_status(error)
    if status:
        return status in retry_on
    return True


async def with_retry(
    operation: Callable[[int], Awaitable[Any]],
    options: RetryOptions | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: random.Random | None = None,
) -> Any:
    """Run ``operation(attempt)`` until it succeeds or stops being retriable.

    ``attempt`` passed to the operation is 0 for the first try. When a
    retriable failure outlives ``max_retries``, ``RetriesExhausted`` is raised
    from the last error; non-retriable errors propagate unchanged.
    """
    options = options or RetryOptions()
    attempt = 0

    while True:
        try:
            return await operation(attempt)
        except Exception as e:
            if isinstance(e, (Aborted, SchedulerClosed)):
                raise
            if options.is_retriable is not None:
                retriable = bool(options.is_retriable(e, attempt))
            else:
                retriable = is_retriable_error(e, options.retry_on)
            if not retriable:
                raise
            if attempt >= options.max_retries:
                logger.warning("Retries exhausted after %d attempts: %s", attempt + 1, e)
                raise RetriesExhausted(e, attempts=attempt + 1) from e

            attempt += 1
            status = error_status(e)
            delay_ms = compute_backoff_delay(
                attempt,
                options.base_delay_ms,
                options.max_delay_ms,
                options.jitter,
                rng=rng,
            )
            metrics.RETRIES.labels(status=str(status) if status else "network").inc()
            logger.info(
                "Retry %d/%d in %dms (status=%s): %s",
                attempt,
                options.max_retries,
                delay_ms,
                status or "-",
                e,
            )
            if options.on_retry is not None:
                best_effort(
                    options.on_retry,
                    RetryEvent(attempt=attempt, delay_ms=delay_ms, status_code=status, error=e),
                    what="on_retry hook",
                )
            await sleep(delay_ms / 1000.0)


async def scheduled_fetch(
    scheduler: ConcurrencyScheduler,
    operation: Callable[[], Awaitable[Any]],
    options: RetryOptions | None = None,
    throttle_window_ms: int = 60_000,
    signal: AbortController | None = None,
    rng: random.Random | None = None,
) -> Any:
    """Retry ``operation`` with every attempt dispatched through ``scheduler``.

    A failing attempt whose status is in ``THROTTLE_STATUSES`` throttles the
    scheduler for ``throttle_window_ms`` before the backoff sleep. Backoff
    sleeps end early with ``Aborted`` when ``signal`` is cancelled.
    """
    options = options or RetryOptions()
    user_hook = options.on_retry

    def _on_retry(event: RetryEvent) -> None:
        if event.status_code in THROTTLE_STATUSES:
            best_effort(scheduler.throttle_temporarily, throttle_window_ms, what="temporary throttle")
        if user_hook is not None:
            user_hook(event)

    async def _attempt(attempt: int) -> Any:
        return await scheduler.enqueue(operation, signal=signal)

    return await with_retry(
        _attempt,
        replace(options, on_retry=_on_retry),
        sleep=signal.sleep if signal is not None else asyncio.sleep,
        rng=rng,
    )
