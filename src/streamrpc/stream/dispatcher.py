"""Update dispatcher.

Single entry point for updates coming from a transport. Resolves the handle,
stores the result, wakes waiters and hands callbacks to the `CallbackRunner`.
Callbacks never run on the transport's delivery thread.
"""

import logging

from streamrpc.errors import FailureDescription
from streamrpc.stream.handle import StreamHandle
from streamrpc.stream.registry import StreamRegistry
from streamrpc.stream.runner import CallbackRunner
from streamrpc.types import StreamResult, StreamUpdate

logger = logging.getLogger(__name__)


class UpdateDispatcher:
    """Routes `StreamUpdate`s to their handles. Implements `UpdateSink`."""

    def __init__(self, registry: StreamRegistry, runner: CallbackRunner):
        self._registry = registry
        self._runner = runner

    def dispatch(self, update: StreamUpdate) -> None:
        handle = self._registry.dispatch(update.stream_id, update.result)
        if handle is None:
            return
        self._deliver(handle, update.result)

    def fail_all(self, failure: FailureDescription) -> None:
        logger.warning("Transport failed, failing all streams: %s", failure.message)
        result = StreamResult.failed(failure)
        for handle in self._registry.fail_all(result):
            self._deliver(handle, result)

    def _deliver(self, handle: StreamHandle, result: StreamResult) -> None:
        # Queue under the handle lock so callback order matches delivery order
        with handle.condition:
            callbacks = handle.deliver(result)
            if callbacks:
                self._runner.submit(handle, callbacks, result)
