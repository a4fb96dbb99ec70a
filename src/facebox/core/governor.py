"""Concurrency ceiling and timeouts for pipeline calls.

Architecture:
    FastAPI (async) -> admission check -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> pipeline

Calls beyond the ceiling wait in a bounded FIFO queue; once that queue is full
they are rejected with BusyError. Each call gets a CancellationToken with the
call's deadline. On expiry the caller gets PipelineTimeoutError right away,
while the worker abandons the call at its next stage boundary. The slot is only
freed when the worker thread has actually finished.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, TypeVar

from facebox.core.cancellation import CancellationToken
from facebox.core.errors import BusyError, PipelineTimeoutError
from facebox.core.models import GovernorStatus

if TYPE_CHECKING:
    from collections.abc import Callable

    from facebox.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResourceGovernor:
    """Bounds concurrently executing pipeline calls and enforces call timeouts.

    Only call counts and elapsed time are inspected, never call arguments.
    """

    def __init__(self, max_concurrent: int = 2, max_queue: int = 8, call_timeout: float = 30.0) -> None:
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        if max_queue < 0:
            raise ValueError(f"max_queue must not be negative, got {max_queue}")
        self._ceiling = max_concurrent
        self._max_queue = max_queue
        self._call_timeout = call_timeout
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent,
            thread_name_prefix="facebox-pipeline",
        )
        self._in_flight: int = 0
        self._queue_depth: int = 0
        # Admitted calls, queued or running. Reserved before the first await.
        self._reserved: int = 0
        self._counter_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> ResourceGovernor:
        return cls(
            max_concurrent=settings.max_concurrent,
            max_queue=settings.max_queue,
            call_timeout=settings.call_timeout,
        )

    async def run(self, func: Callable[..., T], *args: Any, timeout: float | None = None) -> T:
        """Run ``func(*args, token=...)`` on a worker thread under the ceiling.

        ``func`` must accept a ``token`` keyword argument and check it at its
        stage boundaries.

        Raises:
            BusyError: The ceiling is reached and the admission queue is full.
            PipelineTimeoutError: The call did not finish within its budget,
                including time spent queued.
        """
        budget = self._call_timeout if timeout is None else timeout
        token = CancellationToken(budget)

        with self._counter_lock:
            if self._reserved >= self._ceiling + self._max_queue:
                logger.warning(
                    "Rejecting call: %d in flight, %d queued (ceiling=%d, max_queue=%d)",
                    self._in_flight,
                    self._queue_depth,
                    self._ceiling,
                    self._max_queue,
                )
                raise BusyError("Pipeline is at capacity, try again later")
            self._reserved += 1
            self._queue_depth += 1

        acquired = False
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=token.remaining())
            acquired = True
        except TimeoutError:
            logger.warning("Call timed out after %.2fs waiting for a pipeline slot", budget)
            raise PipelineTimeoutError(f"Timed out after {budget:.2f}s waiting for a pipeline slot") from None
        finally:
            with self._counter_lock:
                self._queue_depth -= 1
                if not acquired:
                    self._reserved -= 1

        with self._counter_lock:
            self._in_flight += 1

        loop = asyncio.get_running_loop()
        try:
            future: Future[T] = self._executor.submit(func, *args, token=token)
        except RuntimeError:
            self._release_slot()
            raise
        future.add_done_callback(lambda _: self._schedule_release(loop))

        try:
            return await asyncio.wait_for(asyncio.wrap_future(future), timeout=token.remaining())
        except TimeoutError:
            token.cancel()
            logger.warning("Call exceeded its %.2fs budget, abandoning at next stage boundary", budget)
            raise PipelineTimeoutError(f"Call exceeded its {budget:.2f}s budget") from None
        except asyncio.CancelledError:
            token.cancel()
            raise

    def status(self) -> GovernorStatus:
        """Snapshot of the counters for status reporting."""
        with self._counter_lock:
            return GovernorStatus(
                in_flight=self._in_flight,
                ceiling=self._ceiling,
                queue_depth=self._queue_depth,
                max_queue=self._max_queue,
            )

    @property
    def active_count(self) -> int:
        """Number of calls currently holding a slot."""
        with self._counter_lock:
            return self._in_flight

    @property
    def queue_depth(self) -> int:
        """Number of calls waiting for a slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the worker pool, waiting for running calls to finish."""
        self._executor.shutdown(wait=True)

    def _schedule_release(self, loop: asyncio.AbstractEventLoop) -> None:
        # Runs on the worker thread; the semaphore belongs to the event loop.
        if loop.is_closed():
            with self._counter_lock:
                self._in_flight -= 1
                self._reserved -= 1
            return
        loop.call_soon_threadsafe(self._release_slot)

    def _release_slot(self) -> None:
        self._semaphore.release()
        with self._counter_lock:
            self._in_flight -= 1
            self._reserved -= 1
