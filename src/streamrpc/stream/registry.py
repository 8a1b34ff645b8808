"""Stream registry.

Maps descriptors to shared `StreamHandle`s so that equal subscriptions share
one server-side stream. The registry owns the reference counts and the two
indices (by descriptor and by stream id). It never takes the lock of a
published handle while holding its own, so calling it with a handle lock held
cannot deadlock the registry. Update delivery still needs that handle's lock.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Optional

from streamrpc.descriptor import RequestDescriptor
from streamrpc.errors import StreamTimeout
from streamrpc.rpc.base import RPCError, StreamTransport
from streamrpc.stream.handle import StreamHandle, StreamState
from streamrpc.types import StreamId, StreamResult

logger = logging.getLogger(__name__)


class StreamRegistry:
    """Deduplicating, reference-counted set of live streams."""

    def __init__(
        self,
        transport: StreamTransport,
        first_value_timeout: Optional[float] = None,
    ):
        """
        Args:
            transport: Connection used to start and stop streams
            first_value_timeout: Seconds `subscribe()` waits for the first value
        """
        self._transport = transport
        self._first_value_timeout = first_value_timeout
        self._lock = threading.Lock()
        self._by_descriptor: dict[RequestDescriptor, StreamHandle] = {}
        self._by_id: dict[StreamId, StreamHandle] = {}
        self._starting: dict[RequestDescriptor, Future] = {}
        # Updates for ids not yet registered, kept while a start is in flight
        self._early: dict[StreamId, StreamResult] = {}
        # Set once the transport has failed
        self._terminal: Optional[StreamResult] = None

    def subscribe(self, descriptor: RequestDescriptor) -> StreamHandle:
        """Return the handle for `descriptor`, starting a stream if needed.

        Blocks until the handle holds its first result.

        Raises:
            StreamTimeout: No first result within `first_value_timeout`.
            StreamStartFailed: The server rejected the request.
        """
        handle = self._acquire(descriptor)
        if not handle.wait_first(self._first_value_timeout):
            self.unsubscribe(handle)
            raise StreamTimeout(descriptor, self._first_value_timeout)
        return handle

    def _acquire(self, descriptor: RequestDescriptor) -> StreamHandle:
        while True:
            with self._lock:
                handle = self._by_descriptor.get(descriptor)
                if handle is not None:
                    handle._refcount += 1
                    return handle
                pending = self._starting.get(descriptor)
                if pending is None:
                    pending = Future()
                    self._starting[descriptor] = pending
                    break
            # Another thread is starting this descriptor; wait and recheck
            pending.result()

        try:
            started = self._transport.start_stream(descriptor)
        except BaseException as e:
            with self._lock:
                self._finish_start(descriptor)
            pending.set_exception(e)
            raise

        handle = StreamHandle(descriptor, started.stream_id)
        if started.initial is not None:
            handle.deliver(started.initial)
        with self._lock:
            # Nothing else can reach the new handle until it is indexed
            early = self._early.pop(started.stream_id, None)
            if early is not None:
                handle.deliver(early)
            if self._terminal is not None:
                handle.deliver(self._terminal)
            self._by_descriptor[descriptor] = handle
            self._by_id[started.stream_id] = handle
            self._finish_start(descriptor)
        pending.set_result(handle)
        logger.debug("Started stream %s for %s", started.stream_id, descriptor)
        return handle

    def _finish_start(self, descriptor: RequestDescriptor) -> None:
        del self._starting[descriptor]
        if not self._starting:
            self._early.clear()

    def unsubscribe(self, handle: StreamHandle) -> bool:
        """Drop one reference on `handle`.

        Returns True if this released the last reference and the stream was
        torn down. Extra calls on a removed handle do nothing.
        """
        with self._lock:
            if handle._refcount == 0:
                return False
            handle._refcount -= 1
            if handle._refcount > 0:
                return False
            self._unindex(handle)
        self._teardown(handle)
        return True

    def _unindex(self, handle: StreamHandle) -> None:
        if self._by_descriptor.get(handle.descriptor) is handle:
            del self._by_descriptor[handle.descriptor]
        if self._by_id.get(handle.stream_id) is handle:
            del self._by_id[handle.stream_id]

    def _teardown(self, handle: StreamHandle) -> None:
        handle.mark_removed()
        try:
            self._transport.stop_stream(handle.stream_id)
        except RPCError as e:
            logger.warning("Failed to stop stream %s: %s", handle.stream_id, e)

    def dispatch(self, stream_id: StreamId, result: StreamResult) -> Optional[StreamHandle]:
        """Resolve the handle an update belongs to.

        Returns None when the id is unknown. Updates for streams that were
        already removed are dropped. Updates that race ahead of a start reply
        are held until the stream is registered.
        """
        with self._lock:
            handle = self._by_id.get(stream_id)
            if handle is None:
                if self._starting:
                    self._early[stream_id] = result
                else:
                    logger.debug("Dropping update for unknown stream %s", stream_id)
            return handle

    def fail_all(self, result: StreamResult) -> list[StreamHandle]:
        """Record a terminal transport failure.

        Returns the active handles; the caller delivers `result` to them.
        Streams registered later start out with the same failure.
        """
        with self._lock:
            self._terminal = result
            self._early.clear()
            return list(self._by_id.values())

    def lookup(self, descriptor: RequestDescriptor) -> Optional[StreamHandle]:
        with self._lock:
            return self._by_descriptor.get(descriptor)

    def handles(self) -> list[StreamHandle]:
        """Snapshot of the active handles."""
        with self._lock:
            return list(self._by_id.values())

    def clear(self) -> None:
        """Tear down every stream regardless of outstanding references."""
        with self._lock:
            handles = list(self._by_id.values())
            for handle in handles:
                handle._refcount = 0
            self._by_descriptor.clear()
            self._by_id.clear()
        for handle in handles:
            if handle.state is StreamState.ACTIVE:
                self._teardown(handle)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)
