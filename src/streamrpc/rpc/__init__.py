# RPC module - (key, data) channels and the transports built on them
from streamrpc.rpc.base import (
    RPC_KEY_SHUTDOWN,
    STREAM_KEY_START,
    STREAM_KEY_START_FAILED,
    STREAM_KEY_STARTED,
    STREAM_KEY_STOP,
    STREAM_KEY_UPDATE,
    ChannelBroken,
    ChannelClosed,
    RecvTimeout,
    RPCError,
    StreamTransport,
    SyncRPCChannel,
    UpdateSink,
)
from streamrpc.rpc.remote import (
    ConnectionHandler,
    SyncWebSocketChannel,
    WebSocketChannel,
    connect_channel,
    connect_sync,
    serve_background,
)
from streamrpc.rpc.thread import (
    SyncThreadChannel,
    create_thread_channel_pair,
)
from streamrpc.rpc.transport import ChannelTransport

__all__ = [
    # Base
    "RPCError",
    "ChannelClosed",
    "ChannelBroken",
    "RecvTimeout",
    "SyncRPCChannel",
    "StreamTransport",
    "UpdateSink",
    "RPC_KEY_SHUTDOWN",
    "STREAM_KEY_START",
    "STREAM_KEY_STARTED",
    "STREAM_KEY_START_FAILED",
    "STREAM_KEY_STOP",
    "STREAM_KEY_UPDATE",
    # Thread (OS threads, same process)
    "SyncThreadChannel",
    "create_thread_channel_pair",
    # Remote (network)
    "WebSocketChannel",
    "SyncWebSocketChannel",
    "ConnectionHandler",
    "connect_channel",
    "connect_sync",
    "serve_background",
    # Stream transport
    "ChannelTransport",
]
