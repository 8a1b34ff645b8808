"""
Shared pytest fixtures for streamrpc tests.
"""

import threading

import pytest

from streamrpc import StreamConfig, StreamManager, register_remote_error, unregister_remote_error
from streamrpc.rpc.thread import create_thread_channel_pair
from streamrpc.rpc.transport import ChannelTransport

from servers import (
    CustomRemoteError,
    FakeStreamServer,
    InvalidOperationError,
    ManualTransport,
)


@pytest.fixture(autouse=True, scope="session")
def remote_errors():
    """Map the fake server's error names to local exception classes."""
    register_remote_error("InvalidOperation", InvalidOperationError)
    register_remote_error("CustomError", CustomRemoteError)
    yield
    unregister_remote_error("InvalidOperation")
    unregister_remote_error("CustomError")


@pytest.fixture
def transport():
    """A transport driven by hand from the test."""
    return ManualTransport()


@pytest.fixture
def manager(transport):
    """A StreamManager over the manual transport."""
    manager = StreamManager(transport, StreamConfig(callback_workers=2))
    yield manager
    manager.close()


def _serve(server, config=None):
    client_channel, server_channel = create_thread_channel_pair()
    thread = threading.Thread(target=server.serve, args=(server_channel,), daemon=True)
    thread.start()
    manager = StreamManager(ChannelTransport(client_channel), config)
    return manager, thread


@pytest.fixture
def server():
    """Fake stream server; sends the first result in the start reply."""
    return FakeStreamServer()


@pytest.fixture
def connection(server):
    """StreamManager connected to `server` over a thread channel."""
    manager, thread = _serve(server)
    yield manager
    manager.close()
    thread.join(timeout=2.0)


@pytest.fixture(params=["update_after", "update_before"])
def async_initial_connection(request):
    """StreamManager whose server sends first results as updates."""
    server = FakeStreamServer(initial=request.param)
    manager, thread = _serve(server)
    yield manager, server
    manager.close()
    thread.join(timeout=2.0)
