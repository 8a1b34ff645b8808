"""Thread RPC.

Channel for communication between OS threads using `queue.Queue`. Used for
in-process transports, where the "server" runs on its own thread.

Usage:
    ```python
    import threading
    from streamrpc.rpc.thread import create_thread_channel_pair

    def server(channel):
        key, data = channel.recv()
        channel.send("echo", data)

    client_channel, server_channel = create_thread_channel_pair()
    threading.Thread(target=server, args=(server_channel,)).start()

    client_channel.send("hello", "world")
    key, data = client_channel.recv(timeout=1.0)
    ```
"""

import queue
import threading
from typing import Any

from streamrpc.rpc.base import (
    ChannelBroken,
    ChannelClosed,
    RecvTimeout,
    RPC_KEY_SHUTDOWN,
)


class SyncThreadChannel:
    """Synchronous RPC channel over thread-safe queues.

    Thread-safe.
    """

    def __init__(
        self,
        send_queue: queue.Queue,
        recv_queue: queue.Queue,
    ):
        """Create a channel from thread-safe queues.

        Args:
            send_queue: Queue for outgoing messages
            recv_queue: Queue for incoming messages
        """
        self._send_queue = send_queue
        self._recv_queue = recv_queue
        self._closed = False
        self._lock = threading.Lock()

    def send(self, key: str, data: Any) -> None:
        """Send a message."""
        if self._closed:
            raise ChannelClosed("Channel is closed")

        try:
            self._send_queue.put((key, data))
        except Exception as e:
            self._closed = True
            raise ChannelBroken(f"Channel broken: {e}")

    def recv(self, timeout: float | None = None) -> tuple[str, Any]:
        """Receive a message with optional timeout."""
        if self._closed:
            raise ChannelClosed("Channel is closed")

        try:
            result = self._recv_queue.get(timeout=timeout)
        except queue.Empty:
            raise RecvTimeout(f"Receive timed out after {timeout}s")

        return self._check(result)

    def try_recv(self) -> tuple[str, Any] | None:
        """Non-blocking receive."""
        if self._closed:
            raise ChannelClosed("Channel is closed")

        try:
            result = self._recv_queue.get_nowait()
        except queue.Empty:
            return None

        return self._check(result)

    def _check(self, result: tuple[str, Any]) -> tuple[str, Any]:
        if result[0] == RPC_KEY_SHUTDOWN:
            self._closed = True
            raise ChannelClosed("Channel was shut down")
        return result

    def close(self) -> None:
        """Close the channel.

        Tells the other end to shut down and unblocks any local `recv()`.
        """
        with self._lock:
            if not self._closed:
                self._closed = True
                self._send_queue.put_nowait((RPC_KEY_SHUTDOWN, None))
                self._recv_queue.put_nowait((RPC_KEY_SHUTDOWN, None))

    @property
    def is_closed(self) -> bool:
        return self._closed


def create_thread_channel_pair() -> tuple[SyncThreadChannel, SyncThreadChannel]:
    """Create a pair of connected SyncThreadChannels.

    Returns:
        (channel_a, channel_b) where messages sent on one are received on the other.
    """
    queue_a_to_b: queue.Queue = queue.Queue()
    queue_b_to_a: queue.Queue = queue.Queue()

    channel_a = SyncThreadChannel(send_queue=queue_a_to_b, recv_queue=queue_b_to_a)
    channel_b = SyncThreadChannel(send_queue=queue_b_to_a, recv_queue=queue_a_to_b)

    return channel_a, channel_b
