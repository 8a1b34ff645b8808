"""Channel transport.

Implements `StreamTransport` over any `SyncRPCChannel`. A reader thread owns
the receiving side of the channel: start replies are matched to the waiting
`start_stream()` call by request id. Stream updates and transport failures
are queued, in arrival order, for a delivery thread that hands them to the
connected `UpdateSink`. A sink that blocks on a stream lock therefore stalls
update delivery but never the start replies.

Usage:
    ```python
    from streamrpc import StreamManager
    from streamrpc.rpc.thread import create_thread_channel_pair
    from streamrpc.rpc.transport import ChannelTransport

    client_channel, server_channel = create_thread_channel_pair()
    # ... run a stream server on server_channel ...

    with StreamManager(ChannelTransport(client_channel)) as manager:
        stream = manager.add_stream(descriptor)
        print(stream.get())
    ```
"""

import itertools
import logging
import queue
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Optional

from streamrpc.descriptor import RequestDescriptor
from streamrpc.errors import (
    TRANSPORT_FAILURE_NAME,
    FailureDescription,
    StreamStartFailed,
)
from streamrpc.rpc.base import (
    ChannelBroken,
    ChannelClosed,
    RecvTimeout,
    RPC_KEY_BROKEN,
    RPC_KEY_SHUTDOWN,
    STREAM_KEY_START,
    STREAM_KEY_START_FAILED,
    STREAM_KEY_STARTED,
    STREAM_KEY_STOP,
    STREAM_KEY_UPDATE,
    SyncRPCChannel,
    UpdateSink,
)
from streamrpc.types import StreamId, StreamStarted

logger = logging.getLogger(__name__)


class ChannelTransport:
    """Stream transport over a `SyncRPCChannel`."""

    def __init__(
        self,
        channel: SyncRPCChannel,
        request_timeout: Optional[float] = 10.0,
    ):
        """
        Args:
            channel: Connected channel to a stream server
            request_timeout: Seconds to wait for a start reply (None = forever).
                A `StreamManager` replaces it with its config's value.
        """
        self._channel = channel
        self._request_timeout = request_timeout
        self._lock = threading.Lock()
        self._request_ids = itertools.count()
        self._pending: dict[int, tuple[RequestDescriptor, Future]] = {}
        self._sink: Optional[UpdateSink] = None
        self._closing = False
        self._broken: Optional[Exception] = None
        # (key, data) items for the delivery thread; RPC_KEY_SHUTDOWN ends it
        self._deliveries: queue.Queue = queue.Queue()
        self._reader = threading.Thread(
            target=self._read_loop,
            name="StreamTransportReader",
            daemon=True,
        )
        self._delivery = threading.Thread(
            target=self._delivery_loop,
            name="StreamTransportDelivery",
            daemon=True,
        )
        self._delivery.start()
        self._reader.start()

    @property
    def request_timeout(self) -> Optional[float]:
        return self._request_timeout

    def set_request_timeout(self, timeout: Optional[float]) -> None:
        self._request_timeout = timeout

    def connect_updates(self, sink: UpdateSink) -> None:
        with self._lock:
            self._sink = sink

    def start_stream(self, descriptor: RequestDescriptor) -> StreamStarted:
        """Ask the server to stream `descriptor` and wait for its reply.

        Raises:
            StreamStartFailed: The server rejected the request.
            RecvTimeout: No reply within `request_timeout`.
            ChannelClosed, ChannelBroken: The channel is unusable.
        """
        request_id = next(self._request_ids)
        future: Future = Future()
        with self._lock:
            if self._broken is not None:
                raise ChannelBroken(f"Transport is broken: {self._broken}")
            self._pending[request_id] = (descriptor, future)
        timeout = self._request_timeout
        try:
            self._channel.send(STREAM_KEY_START, (request_id, descriptor))
            return future.result(timeout=timeout)
        except FutureTimeout:
            raise RecvTimeout(
                f"No reply to start request for {descriptor} after {timeout}s"
            )
        finally:
            with self._lock:
                self._pending.pop(request_id, None)

    def stop_stream(self, stream_id: StreamId) -> None:
        if self._channel.is_closed:
            return
        self._channel.send(STREAM_KEY_STOP, stream_id)

    def _read_loop(self) -> None:
        try:
            while True:
                key, data = self._channel.recv()
                self._handle_message(key, data)
        except ChannelClosed as e:
            if self._closing:
                self._fail_pending(e)
            else:
                self._fail(ChannelBroken("Channel closed by peer"))
        except ChannelBroken as e:
            self._fail(e)
        finally:
            self._deliveries.put((RPC_KEY_SHUTDOWN, None))

    def _handle_message(self, key: str, data) -> None:
        if key == STREAM_KEY_UPDATE:
            self._deliveries.put((key, data))
        elif key == STREAM_KEY_STARTED:
            request_id, started = data
            entry = self._take_pending(request_id)
            if entry is not None:
                entry[1].set_result(started)
        elif key == STREAM_KEY_START_FAILED:
            request_id, failure = data
            entry = self._take_pending(request_id)
            if entry is not None:
                descriptor, future = entry
                future.set_exception(StreamStartFailed(descriptor, failure))
        else:
            logger.warning("Ignoring unexpected message '%s'", key)

    def _delivery_loop(self) -> None:
        while True:
            key, data = self._deliveries.get()
            if key == RPC_KEY_SHUTDOWN:
                return
            sink = self._sink
            if sink is None:
                logger.debug("No update sink connected, dropping '%s'", key)
                continue
            try:
                if key == RPC_KEY_BROKEN:
                    sink.fail_all(data)
                else:
                    sink.dispatch(data)
            except Exception:
                logger.exception("Update delivery failed for '%s'", key)

    def _take_pending(self, request_id: int):
        with self._lock:
            entry = self._pending.pop(request_id, None)
        if entry is None:
            logger.debug("Reply for unknown request %s", request_id)
        return entry

    def _fail_pending(self, error: Exception) -> None:
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for _, future in pending:
            if not future.done():
                future.set_exception(error)

    def _fail(self, error: Exception) -> None:
        logger.warning("Stream transport failed: %s", error)
        with self._lock:
            self._broken = error
        self._fail_pending(error)
        # Queued behind the updates that arrived before the failure
        self._deliveries.put(
            (RPC_KEY_BROKEN, FailureDescription(TRANSPORT_FAILURE_NAME, str(error)))
        )

    @property
    def is_broken(self) -> bool:
        return self._broken is not None

    def close(self, timeout: float = 1.0) -> None:
        """Close the channel and stop the reader and delivery threads."""
        self._closing = True
        self._channel.close()
        current = threading.current_thread()
        if self._reader is not current:
            self._reader.join(timeout=timeout)
        if self._delivery is not current:
            self._delivery.join(timeout=timeout)
