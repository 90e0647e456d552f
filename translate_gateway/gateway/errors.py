"""Failure taxonomy for the translation gateway.

Every failure that crosses a component boundary is one of these classes, so
retry and fallback decisions are made on the type, never on message text:

  - Aborted: job cancelled — terminal, never retried
  - ProviderNetworkError: transport failure without a status — retried
  - ProviderHTTPError: provider answered with a non-2xx status — retried
    iff the status is in the configured retry set
  - RetriesExhausted: last retriable failure after the retry limit
  - ParseFailure: response did not match the expected shape — drives
    per-item fallback for a batch chunk
  - SchedulerClosed: the scheduler was shut down — surfaced immediately
  - ProviderConfigError: provider cannot be called as configured
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Base class for all gateway failures."""

    status_code: int | None = None

    def __init__(self, message: str = "", status_code: int | None = None):
        super().__init__(message or self.__class__.__name__)
        if status_code is not None:
            self.status_code = status_code


class Aborted(GatewayError):
    """The job owning this request was cancelled."""

    def __init__(self, message: str = "Aborted"):
        super().__init__(message)


class SchedulerClosed(GatewayError):
    """The scheduler no longer accepts or runs queued work."""

    def __init__(self, message: str = "Scheduler closed"):
        super().__init__(message)


class ProviderNetworkError(GatewayError):
    """Transport-level failure (DNS, connect, timeout, reset)."""


class ProviderHTTPError(GatewayError):
    """Provider responded with a non-success HTTP status."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"Provider HTTP {status_code}: {body[:200]}", status_code=status_code)
        self.body = body[:200]


class ParseFailure(GatewayError):
    """Provider response could not be parsed into the expected result."""

    def __init__(self, message: str = "Invalid provider response", raw: str = ""):
        super().__init__(message)
        self.raw = raw[:200]


class ProviderConfigError(GatewayError):
    """Provider is misconfigured (e.g. missing API key)."""


class RetriesExhausted(GatewayError):
    """A retriable failure persisted past the retry limit."""

    def __init__(self, last_error: BaseException, attempts: int):
        super().__init__(
            f"Giving up after {attempts} attempts: {last_error}",
            status_code=getattr(last_error, "status_code", None),
        )
        self.last_error = last_error
        self.attempts = attempts


class TranslationFailed(GatewayError):
    """One or more items of a translate call failed terminally.

    ``results`` holds the per-item outcome list, aligned with the input.
    """

    def __init__(self, results: list):
        failed = [r for r in results if r.error is not None]
        super().__init__(f"{len(failed)} of {len(results)} items failed")
        self.results = results


def error_status(error: BaseException) -> int:
    """HTTP-like status carried by an error, 0 when it has none."""
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else 0


def best_effort(action, *args, what: str = "best-effort action") -> None:
    """Run a non-critical side effect: log-and-continue on failure.

    Used where a failure must not disturb the request it is attached to
    (observer hooks, throttle side effects, cancelling handles).
    """
    try:
        action(*args)
    except Exception:
        logger.warning("%s failed; continuing", what, exc_info=True)
