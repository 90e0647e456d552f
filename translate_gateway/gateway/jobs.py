"""Job-scoped cancellation.

A job is a logical unit of work (e.g. "translate this page") spanning many
queued and in-flight provider requests that share one ``job_id``. Each
request owns an ``AbortController``; the ``JobRegistry`` maps job ids to the
live controllers so the whole job can be aborted at once.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from translate_gateway.gateway.errors import Aborted, best_effort

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AbortController:
    """Cancellation handle and signal for one logical request.

    ``cancel()`` flips the signal, wakes interruptible sleeps, cancels any
    call started through ``run()`` and fires registered callbacks (used by
    the scheduler to drop a still-queued task).
    """

    def __init__(self) -> None:
        self._aborted = False
        self._event: asyncio.Event | None = None
        self._tasks: set[asyncio.Task] = set()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    def cancel(self) -> None:
        if self._aborted:
            return
        self._aborted = True
        if self._event is not None:
            self._event.set()
        for task in list(self._tasks):
            task.cancel()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            best_effort(callback, what="abort callback")

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call ``callback`` on cancel (immediately if already cancelled).

        Returns a function that unregisters the callback.
        """
        if self._aborted:
            best_effort(callback, what="abort callback")
            return lambda: None
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    def raise_if_aborted(self) -> None:
        if self._aborted:
            raise Aborted()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` as a task that ``cancel()`` can interrupt."""
        if self._aborted:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise Aborted()

        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if self._aborted:
                raise Aborted() from None
            raise
        finally:
            self._tasks.discard(task)

    async def sleep(self, seconds: float) -> None:
        """Sleep that ends early with ``Aborted`` when the controller is cancelled."""
        self.raise_if_aborted()
        if self._event is None:
            self._event = asyncio.Event()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return
        raise Aborted()


class JobRegistry:
    """Live cancellation handles per job id.

    A job id with no live handles is removed from the registry, so completed
    jobs leave nothing behind. Mutations are serialized by a lock so the
    registry may be touched from threads other than the event loop.

    Usage:
        registry.register("job-1", controller)
        ...
        registry.unregister("job-1", controller)

        registry.abort("job-1")   # cancel every live handle of the job
    """

    def __init__(self) -> None:
        self._jobs: dict[str, list[Any]] = {}
        self._lock = threading.Lock()

    def register(self, job_id: str, handle: Any) -> None:
        if not job_id or handle is None:
            return
        with self._lock:
            self._jobs.setdefault(job_id, []).append(handle)

    def unregister(self, job_id: str, handle: Any) -> None:
        if not job_id or handle is None:
            return
        with self._lock:
            handles = self._jobs.get(job_id)
            if handles is None:
                return
            try:
                handles.remove(handle)
            except ValueError:
                pass
            if not handles:
                del self._jobs[job_id]

    def abort(self, job_id: str) -> int:
        """Cancel every handle registered for ``job_id``; returns how many were signalled."""
        with self._lock:
            handles = self._jobs.pop(job_id, [])

        for handle in handles:
            best_effort(handle.cancel, what=f"cancel handle of job {job_id}")

        if handles:
            logger.info("Aborted job %s (%d handles)", job_id, len(handles), extra={"job_id": job_id})
        return len(handles)

    def handle_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._jobs.get(job_id, []))

    def active_jobs(self) -> list[str]:
        with self._lock:
            return list(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs
