"""RPC base.

Core abstractions for the transport layer: the channel protocol for
bidirectional `(key, data)` message passing, the transport protocol the stream
core consumes, and the message keys of the stream protocol.
"""

from typing import Any, Protocol, runtime_checkable

from streamrpc.descriptor import RequestDescriptor
from streamrpc.errors import FailureDescription
from streamrpc.types import StreamId, StreamStarted, StreamUpdate


# Exceptions

class RPCError(Exception):
    """Base exception for RPC errors."""
    pass


class ChannelClosed(RPCError):
    """Raised when attempting to use a closed channel."""
    pass


class ChannelBroken(RPCError):
    """Raised when the channel is unexpectedly broken (e.g., other end died)."""
    pass


class RecvTimeout(RPCError):
    """Raised when recv times out."""
    pass


# Channel protocol

@runtime_checkable
class SyncRPCChannel(Protocol):
    """Sync protocol for bidirectional (key, data) message passing.

    Thread-safe - can be shared among multiple threads.
    """

    def send(self, key: str, data: Any) -> None:
        """Send a message."""
        ...

    def recv(self, timeout: float | None = None) -> tuple[str, Any]:
        """Receive a message. Blocks until available or timeout."""
        ...

    def try_recv(self) -> tuple[str, Any] | None:
        """Non-blocking receive. Returns None if no message."""
        ...

    def close(self) -> None:
        """Close the channel."""
        ...

    @property
    def is_closed(self) -> bool:
        """Whether the channel is closed."""
        ...


# Transport protocol

@runtime_checkable
class UpdateSink(Protocol):
    """Receiver of inbound stream updates."""

    def dispatch(self, update: StreamUpdate) -> None:
        """Route one update to its stream."""
        ...

    def fail_all(self, failure: FailureDescription) -> None:
        """Mark every active stream as failed by a transport error."""
        ...


@runtime_checkable
class StreamTransport(Protocol):
    """What the stream core needs from a connection to the server."""

    def start_stream(self, descriptor: RequestDescriptor) -> StreamStarted:
        """Ask the server to start streaming `descriptor`."""
        ...

    def stop_stream(self, stream_id: StreamId) -> None:
        """Ask the server to stop a stream. Best effort."""
        ...

    def connect_updates(self, sink: UpdateSink) -> None:
        """Deliver all inbound updates to `sink`."""
        ...

    def set_request_timeout(self, timeout: float | None) -> None:
        """Bound the wait for a start reply (None = forever)."""
        ...

    def close(self) -> None:
        """Close the transport."""
        ...


# RPC layer keys
# Format: "__rpc:name"

RPC_KEY_SHUTDOWN = "__rpc:shutdown"
"""Signal graceful channel shutdown. Either side can send."""

RPC_KEY_ERROR = "__rpc:error"
"""Channel-level error (e.g., parse error, deserialization failure)."""

RPC_KEY_BROKEN = "__rpc:broken"
"""Connection broken unexpectedly."""


# Stream protocol keys
# Format: "__stream:name"

STREAM_KEY_START = "__stream:start"
"""Client -> server. Data: `(request_id, RequestDescriptor)`."""

STREAM_KEY_STARTED = "__stream:started"
"""Server -> client. Data: `(request_id, StreamStarted)`."""

STREAM_KEY_START_FAILED = "__stream:start_failed"
"""Server -> client. Data: `(request_id, FailureDescription)`."""

STREAM_KEY_STOP = "__stream:stop"
"""Client -> server. Data: `StreamId`."""

STREAM_KEY_UPDATE = "__stream:update"
"""Server -> client. Data: `StreamUpdate`."""
