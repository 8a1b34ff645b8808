# Stream module - shared, reference-counted subscriptions to remote values
from streamrpc.stream.dispatcher import UpdateDispatcher
from streamrpc.stream.handle import (
    Callback,
    Stream,
    StreamHandle,
    StreamState,
)
from streamrpc.stream.registry import StreamRegistry
from streamrpc.stream.runner import CallbackRunner

__all__ = [
    # Handles
    "Callback",
    "Stream",
    "StreamHandle",
    "StreamState",
    # Registry
    "StreamRegistry",
    # Delivery
    "UpdateDispatcher",
    "CallbackRunner",
]
