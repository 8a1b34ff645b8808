"""Callback runner.

Runs stream callbacks on a pool of worker threads. Deliveries for one handle
are queued and drained by at most one worker at a time, so a handle's
callbacks run in delivery order and never concurrently. Distinct handles are
drained in parallel.
"""

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from streamrpc.stream.handle import Callback, StreamHandle
from streamrpc.types import StreamResult

logger = logging.getLogger(__name__)


class CallbackRunner:
    """Per-handle serial executor for stream callbacks."""

    def __init__(
        self,
        num_workers: int = 4,
        error_handler: Optional[Callable] = None,
    ):
        """
        Args:
            num_workers: Number of worker threads
            error_handler: Called with `(descriptor, exception)` for errors
                raised on the callback path
        """
        if num_workers < 1:
            raise ValueError("num_workers must be at least 1")

        self._executor = ThreadPoolExecutor(
            max_workers=num_workers,
            thread_name_prefix="StreamCallback",
        )
        self._error_handler = error_handler
        self._lock = threading.Lock()
        self._queues: dict[StreamHandle, deque] = {}
        self._workers: set[int] = set()
        self._closed = False

    def submit(
        self,
        handle: StreamHandle,
        callbacks: list[Callback],
        result: StreamResult,
    ) -> None:
        """Queue one delivery for `handle`."""
        with self._lock:
            if self._closed:
                return
            queue = self._queues.get(handle)
            if queue is not None:
                queue.append((callbacks, result))
                return
            self._queues[handle] = deque([(callbacks, result)])
            self._executor.submit(self._drain, handle)

    def _drain(self, handle: StreamHandle) -> None:
        with self._lock:
            self._workers.add(threading.get_ident())
        while True:
            with self._lock:
                queue = self._queues.get(handle)
                if self._closed or not queue:
                    self._queues.pop(handle, None)
                    return
                callbacks, result = queue.popleft()
            self._run(handle, callbacks, result)

    def _run(
        self,
        handle: StreamHandle,
        callbacks: list[Callback],
        result: StreamResult,
    ) -> None:
        try:
            if not result.ok:
                raise result.failure.to_exception()
            for callback in callbacks:
                callback(result.value)
        except Exception as e:
            logger.error(
                "Callback delivery for %s failed: %s", handle.descriptor, e, exc_info=e
            )
            self._report(handle, e)

    def _report(self, handle: StreamHandle, error: Exception) -> None:
        if self._error_handler is None:
            return
        try:
            self._error_handler(handle.descriptor, error)
        except Exception:
            logger.exception("Callback error handler raised")

    @property
    def pending(self) -> int:
        """Number of deliveries waiting to run."""
        with self._lock:
            return sum(len(q) for q in self._queues.values())

    def close(self, wait: bool = True) -> None:
        """Stop running callbacks. Queued deliveries are discarded.

        With `wait`, blocks until running callbacks return, unless called
        from a callback, which cannot wait for itself.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if threading.get_ident() in self._workers:
                wait = False
        self._executor.shutdown(wait=wait)
