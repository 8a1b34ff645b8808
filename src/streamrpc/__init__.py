# streamrpc - live, shared subscriptions to the results of remote calls
from streamrpc.config import StreamConfig
from streamrpc.descriptor import (
    RemoteObject,
    RequestDescriptor,
    method_call,
    object_property_get,
    procedure_call,
    property_get,
    static_method_call,
)
from streamrpc.errors import (
    FailureDescription,
    RemoteFailure,
    StreamError,
    StreamRemoved,
    StreamStartFailed,
    StreamTimeout,
    TransportFailure,
    register_remote_error,
    unregister_remote_error,
)
from streamrpc.manager import StreamManager
from streamrpc.stream import (
    CallbackRunner,
    Stream,
    StreamHandle,
    StreamRegistry,
    StreamState,
    UpdateDispatcher,
)
from streamrpc.types import (
    StreamId,
    StreamResult,
    StreamStarted,
    StreamUpdate,
)

__all__ = [
    # Config
    "StreamConfig",
    # Descriptors
    "RequestDescriptor",
    "RemoteObject",
    "procedure_call",
    "property_get",
    "method_call",
    "static_method_call",
    "object_property_get",
    # Errors
    "FailureDescription",
    "StreamError",
    "StreamRemoved",
    "StreamTimeout",
    "StreamStartFailed",
    "RemoteFailure",
    "TransportFailure",
    "register_remote_error",
    "unregister_remote_error",
    # Messages
    "StreamId",
    "StreamResult",
    "StreamUpdate",
    "StreamStarted",
    # Streams
    "StreamManager",
    "Stream",
    "StreamHandle",
    "StreamState",
    "StreamRegistry",
    "UpdateDispatcher",
    "CallbackRunner",
]
