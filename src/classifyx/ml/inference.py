"""Background execution for classification.

The event loop accepts uploads and delivers results; model execution, which
blocks for the length of a forward pass, runs here on worker threads:

    event loop -> asyncio.Semaphore(max_concurrent) -> ThreadPoolExecutor(max_concurrent) -> Model.run

The semaphore caps how many images are converted to tensors and run at
once, so memory stays proportional to ``CLASSIFYX_MAX_CONCURRENT`` rather
than to the number of open requests. Requests past the cap wait in
``queue_depth`` with no admission timeout; an accepted classification always
runs to completion on the model it snapshotted.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Manages the semaphore and thread pool for ML inference."""

    def __init__(self, max_concurrent: int) -> None:
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent,
            thread_name_prefix="classifyx-inference",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a synchronous function on an inference worker thread.

        Waits for a semaphore slot, runs the function in the executor, then
        releases the slot. Exceptions raised by ``func`` propagate.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await self._semaphore.acquire()
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running inference tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a semaphore slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor, waiting for running work."""
        logger.info("Shutting down inference pool")
        self._executor.shutdown(wait=True)
