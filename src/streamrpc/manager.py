"""Stream manager.

Client-facing entry point. A `StreamManager` binds one transport to a
registry, an update dispatcher and a callback runner, and hands out `Stream`
views.

Example:
    ```python
    from streamrpc import StreamManager, procedure_call

    with StreamManager(transport) as manager:
        counter = manager.add_stream(procedure_call("TestService", "Counter", "c"))
        with counter.condition:
            value = counter.get()
            counter.wait(timeout=1.0)
        counter.remove()
    ```
"""

import logging
from typing import Optional

from streamrpc.config import StreamConfig
from streamrpc.descriptor import RequestDescriptor
from streamrpc.rpc.base import StreamTransport
from streamrpc.stream.dispatcher import UpdateDispatcher
from streamrpc.stream.handle import Stream, StreamHandle
from streamrpc.stream.registry import StreamRegistry
from streamrpc.stream.runner import CallbackRunner

logger = logging.getLogger(__name__)


class StreamManager:
    """Creates and tracks streams over one transport."""

    def __init__(
        self,
        transport: StreamTransport,
        config: Optional[StreamConfig] = None,
    ):
        self._config = config or StreamConfig()
        self._transport = transport
        self._runner = CallbackRunner(
            num_workers=self._config.callback_workers,
            error_handler=self._config.callback_error_handler,
        )
        self._registry = StreamRegistry(
            transport,
            first_value_timeout=self._config.first_value_timeout,
        )
        self._dispatcher = UpdateDispatcher(self._registry, self._runner)
        self._closed = False
        transport.set_request_timeout(self._config.request_timeout)
        transport.connect_updates(self._dispatcher)

    @property
    def config(self) -> StreamConfig:
        return self._config

    @property
    def dispatcher(self) -> UpdateDispatcher:
        return self._dispatcher

    @property
    def registry(self) -> StreamRegistry:
        return self._registry

    @property
    def streams(self) -> list[StreamHandle]:
        """Snapshot of the active shared handles."""
        return self._registry.handles()

    def add_stream(self, descriptor: RequestDescriptor) -> Stream:
        """Subscribe to `descriptor` and return a new view on its stream.

        Blocks until the stream has its first value or failure. Holding
        another stream's `condition` meanwhile pauses update delivery, so a
        first value sent as an update only arrives once it is released.
        """
        if self._closed:
            raise RuntimeError("StreamManager is closed")
        handle = self._registry.subscribe(descriptor)
        return Stream(handle, self._registry)

    def close(self) -> None:
        """Remove every stream and shut down the transport and callbacks."""
        if self._closed:
            return
        self._closed = True
        self._registry.clear()
        self._runner.close()
        self._transport.close()
        logger.debug("Stream manager closed")

    def __enter__(self) -> "StreamManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
