"""Tests for StreamRegistry: deduplication, reference counting and routing."""

import threading
import time

import pytest

from streamrpc import (
    StreamConfig,
    StreamManager,
    StreamRegistry,
    StreamRemoved,
    StreamResult,
    StreamState,
    StreamTimeout,
    procedure_call,
)
from streamrpc.rpc.base import RPCError

from servers import ManualTransport


def f(x):
    return procedure_call("TestService", "Int32ToString", x)


# =============================================================================
# Deduplication
# =============================================================================

def test_equal_descriptors_share_handle():
    transport = ManualTransport()
    registry = StreamRegistry(transport)
    h0 = registry.subscribe(f(0))
    h1 = registry.subscribe(f(0))
    assert h0 is h1
    assert h0.refcount == 2
    assert transport.started == [f(0)]


def test_distinct_descriptors_get_distinct_handles():
    transport = ManualTransport()
    registry = StreamRegistry(transport)
    h0 = registry.subscribe(f(0))
    h1 = registry.subscribe(f(1))
    assert h0 is not h1
    assert h0.stream_id != h1.stream_id
    assert len(registry) == 2


def test_two_views_same_descriptor(manager, transport):
    s0 = manager.add_stream(f(0))
    s1 = manager.add_stream(f(0))
    assert s0 == s1
    assert s0.get() == s1.get() == 0

    transport.push(1, 7)
    assert s0.get() == s1.get() == 7

    s0.remove()
    with pytest.raises(StreamRemoved):
        s0.get()
    assert s1.get() == 7
    assert transport.stopped == []

    s1.remove()
    with pytest.raises(StreamRemoved):
        s1.get()
    assert transport.stopped == [1]


def test_resubscribe_after_teardown_starts_new_stream(manager, transport):
    s0 = manager.add_stream(f(0))
    s0.remove()
    s1 = manager.add_stream(f(0))
    assert s1.get() == 0
    assert len(transport.started) == 2
    assert manager.streams[0].stream_id == 2


def test_concurrent_subscribe_starts_once():
    transport = ManualTransport(start_delay=0.05)
    registry = StreamRegistry(transport)
    barrier = threading.Barrier(8)
    handles = []
    lock = threading.Lock()

    def subscriber():
        barrier.wait()
        handle = registry.subscribe(f(0))
        with lock:
            handles.append(handle)

    threads = [threading.Thread(target=subscriber) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5.0)

    assert len(transport.started) == 1
    assert len(handles) == 8
    assert all(h is handles[0] for h in handles)
    assert handles[0].refcount == 8


def test_independent_subscriptions_start_in_parallel():
    transport = ManualTransport(start_delay=0.2)
    registry = StreamRegistry(transport)
    threads = [
        threading.Thread(target=registry.subscribe, args=(f(i),))
        for i in range(4)
    ]
    start = time.monotonic()
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5.0)
    assert time.monotonic() - start < 0.6
    assert len(registry) == 4


def test_start_failure_reaches_all_waiters():
    class FailingTransport(ManualTransport):
        def start_stream(self, descriptor):
            self.started.append(descriptor)
            time.sleep(0.05)
            raise RPCError("refused")

    transport = FailingTransport()
    registry = StreamRegistry(transport)
    errors = []
    barrier = threading.Barrier(3)

    def subscriber():
        barrier.wait()
        try:
            registry.subscribe(f(0))
        except RPCError as e:
            errors.append(e)

    threads = [threading.Thread(target=subscriber) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5.0)

    assert len(errors) == 3
    assert len(registry) == 0


# =============================================================================
# Interleaved streams
# =============================================================================

def test_interleaved_independent_streams(manager, transport):
    s0 = manager.add_stream(f(0))
    s1 = manager.add_stream(f(1))
    s2 = manager.add_stream(f(2))
    assert (s0.get(), s1.get(), s2.get()) == (0, 1, 2)

    s0.remove()
    s2.remove()
    with pytest.raises(StreamRemoved):
        s0.get()
    with pytest.raises(StreamRemoved):
        s2.get()
    assert s1.get() == 1

    transport.push(2, "one")
    assert s1.get() == "one"
    assert sorted(transport.stopped) == [1, 3]


# =============================================================================
# Unsubscribe
# =============================================================================

def test_unsubscribe_counts_down():
    transport = ManualTransport()
    registry = StreamRegistry(transport)
    handle = registry.subscribe(f(0))
    registry.subscribe(f(0))

    assert registry.unsubscribe(handle) is False
    assert handle.state is StreamState.ACTIVE
    assert registry.unsubscribe(handle) is True
    assert handle.state is StreamState.REMOVED
    assert registry.unsubscribe(handle) is False
    assert transport.stopped == [handle.stream_id]
    assert registry.lookup(f(0)) is None


def test_stop_failure_is_not_raised():
    class StopFailing(ManualTransport):
        def stop_stream(self, stream_id):
            raise RPCError("gone")

    registry = StreamRegistry(StopFailing())
    handle = registry.subscribe(f(0))
    assert registry.unsubscribe(handle) is True
    assert handle.state is StreamState.REMOVED


def test_clear_tears_everything_down():
    transport = ManualTransport()
    registry = StreamRegistry(transport)
    h0 = registry.subscribe(f(0))
    registry.subscribe(f(0))
    h1 = registry.subscribe(f(1))
    registry.clear()
    assert h0.state is StreamState.REMOVED
    assert h1.state is StreamState.REMOVED
    assert sorted(transport.stopped) == [1, 2]
    assert len(registry) == 0
    assert registry.unsubscribe(h0) is False


# =============================================================================
# Dispatch routing
# =============================================================================

def test_dispatch_unknown_id_is_dropped():
    registry = StreamRegistry(ManualTransport())
    assert registry.dispatch(99, StreamResult.of(1)) is None


def test_update_racing_ahead_of_start_reply_is_kept():
    class EarlyTransport(ManualTransport):
        registry = None

        def start_stream(self, descriptor):
            # The update for id 1 arrives before the reply does
            self.registry.dispatch(1, StreamResult.of("early"))
            return super().start_stream(descriptor)

    transport = EarlyTransport(initial=lambda d: None)
    registry = StreamRegistry(transport)
    transport.registry = registry
    handle = registry.subscribe(f(0))
    assert handle.has_result
    assert handle.version == 1


def test_first_value_timeout():
    transport = ManualTransport(initial=lambda d: None)
    registry = StreamRegistry(transport, first_value_timeout=0.05)
    with pytest.raises(StreamTimeout):
        registry.subscribe(f(0))
    assert transport.stopped == [1]
    assert len(registry) == 0


def test_first_value_timeout_via_config():
    transport = ManualTransport(initial=lambda d: None)
    with StreamManager(transport, StreamConfig(first_value_timeout=0.05)) as manager:
        with pytest.raises(StreamTimeout):
            manager.add_stream(f(0))
