"""Stream handles.

A `StreamHandle` is the shared state of one subscription: the latest result,
a version counter, and the condition used to wait for updates. Every call to
`StreamManager.add_stream()` returns a new `Stream` view on the shared handle.
Views compare equal when their descriptors are equal, and each view holds one
reference on the handle until it is removed.

Waiting follows the usual condition variable discipline:

    ```python
    with stream.condition:
        value = stream.get()
        stream.wait(timeout=1.0)
        newer = stream.get()
    ```
"""

import logging
import threading
import time
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional

from streamrpc.descriptor import RequestDescriptor
from streamrpc.errors import StreamRemoved
from streamrpc.types import StreamId, StreamResult

if TYPE_CHECKING:
    from streamrpc.stream.registry import StreamRegistry

logger = logging.getLogger(__name__)

Callback = Callable[[Any], None]


class StreamState(Enum):
    ACTIVE = "active"
    REMOVED = "removed"


class StreamHandle:
    """Shared state of one subscription.

    All fields are guarded by `condition`. The reference count is owned by the
    registry and only touched under the registry lock.
    """

    def __init__(self, descriptor: RequestDescriptor, stream_id: StreamId):
        self._descriptor = descriptor
        self._stream_id = stream_id
        self._lock = threading.RLock()
        self.condition = threading.Condition(self._lock)
        self._state = StreamState.ACTIVE
        self._result: Optional[StreamResult] = None
        self._version = 0
        self._refcount = 1
        self._views: list["Stream"] = []

    @property
    def descriptor(self) -> RequestDescriptor:
        return self._descriptor

    @property
    def stream_id(self) -> StreamId:
        return self._stream_id

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def version(self) -> int:
        """Number of updates (and removals) seen so far."""
        return self._version

    @property
    def refcount(self) -> int:
        return self._refcount

    @property
    def has_result(self) -> bool:
        return self._result is not None

    def deliver(self, result: StreamResult) -> list[Callback]:
        """Store a new result and wake waiters.

        Returns the callbacks of started views, in registration order. Results
        arriving after removal are ignored.
        """
        with self.condition:
            if self._state is StreamState.REMOVED:
                return []
            self._result = result
            self._version += 1
            self.condition.notify_all()
            return [
                callback
                for view in self._views
                if view._started
                for callback in view._callbacks
            ]

    def mark_removed(self) -> None:
        """Transition to REMOVED and release every waiter. Idempotent."""
        with self.condition:
            if self._state is StreamState.REMOVED:
                return
            self._state = StreamState.REMOVED
            self._version += 1
            self._views.clear()
            self.condition.notify_all()
        logger.debug("Stream %s (%s) removed", self._stream_id, self._descriptor)

    def wait_first(self, timeout: Optional[float] = None) -> bool:
        """Block until the first result exists. Returns False on timeout."""
        with self.condition:
            return self.condition.wait_for(
                lambda: self._result is not None or self._state is StreamState.REMOVED,
                timeout=timeout,
            )

    def _attach(self, view: "Stream") -> None:
        with self.condition:
            if self._state is StreamState.ACTIVE:
                self._views.append(view)

    def _detach(self, view: "Stream") -> None:
        with self.condition:
            # Views compare by descriptor, so match on identity
            self._views = [v for v in self._views if v is not view]
            # Waiters on the view recheck its removed flag
            self.condition.notify_all()

    def __repr__(self) -> str:
        return (
            f"StreamHandle(id={self._stream_id}, descriptor={self._descriptor}, "
            f"state={self._state.value}, version={self._version}, refcount={self._refcount})"
        )


class Stream:
    """Client-facing view of a (possibly shared) stream."""

    def __init__(self, handle: StreamHandle, registry: "StreamRegistry"):
        self._handle = handle
        self._registry = registry
        self._removed = False
        self._started = False
        self._callbacks: list[Callback] = []
        handle._attach(self)

    @property
    def descriptor(self) -> RequestDescriptor:
        return self._handle.descriptor

    @property
    def condition(self) -> threading.Condition:
        """Condition to hold while calling `wait()`."""
        return self._handle.condition

    @property
    def is_removed(self) -> bool:
        return self._removed or self._handle.state is StreamState.REMOVED

    def _check_active(self) -> None:
        if self.is_removed:
            raise StreamRemoved(self.descriptor)

    def get(self) -> Any:
        """Return the latest value.

        Raises:
            StreamRemoved: The stream has been removed.
            RemoteFailure: The latest update was a remote error.
        """
        with self._handle.condition:
            self._check_active()
            result = self._handle._result
        if result is None:
            # Only reachable when used without StreamManager
            raise RuntimeError(f"Stream {self.descriptor} has not received a value yet")
        if not result.ok:
            raise result.failure.to_exception()
        return result.value

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the next update, or until `timeout` seconds pass.

        Must be called while holding `condition`. `timeout=0` returns
        immediately.

        Raises:
            StreamRemoved: The stream is, or becomes, removed.
        """
        handle = self._handle
        self._check_active()
        if timeout is not None and timeout <= 0:
            return
        start_version = handle._version
        deadline = None if timeout is None else time.monotonic() + timeout
        while handle._version == start_version and not self.is_removed:
            if deadline is None:
                handle.condition.wait()
            else:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                handle.condition.wait(remaining)
        self._check_active()

    def add_callback(self, callback: Callback) -> None:
        """Call `callback(value)` on every update once the stream is started."""
        with self._handle.condition:
            if self.is_removed:
                return
            self._callbacks.append(callback)

    def remove_callback(self, callback: Callback) -> None:
        with self._handle.condition:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def start(self) -> None:
        """Enable callback delivery."""
        with self._handle.condition:
            if not self.is_removed:
                self._started = True

    def stop(self) -> None:
        """Disable callback delivery. Registered callbacks are kept."""
        with self._handle.condition:
            self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def remove(self) -> None:
        """Release this view's reference on the stream. Idempotent."""
        with self._handle.condition:
            if self._removed:
                return
            self._removed = True
            self._started = False
            self._callbacks.clear()
            self._handle._detach(self)
        self._registry.unsubscribe(self._handle)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Stream):
            return NotImplemented
        return self.descriptor == other.descriptor

    def __hash__(self) -> int:
        return hash(self.descriptor)

    def __repr__(self) -> str:
        state = "removed" if self.is_removed else "active"
        return f"Stream({self.descriptor}, {state})"
