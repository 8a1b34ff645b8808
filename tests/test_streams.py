"""End-to-end stream tests against the fake stream server.

The server runs on its own thread behind a `ChannelTransport`, evaluating
each streamed call every few milliseconds and pushing changed results.
"""

import threading
import time

import pytest

from streamrpc import (
    RemoteObject,
    StreamRemoved,
    StreamStartFailed,
    method_call,
    object_property_get,
    procedure_call,
    property_get,
    static_method_call,
)

from servers import SERVICE, CustomRemoteError, InvalidOperationError, wait_until


def pause():
    time.sleep(0.02)


def call(name, *args):
    return procedure_call(SERVICE, name, *args)


# =============================================================================
# Kinds of streamed calls
# =============================================================================

def test_method(connection):
    x = connection.add_stream(call("FloatToString", 3.14159))
    for _ in range(5):
        assert x.get() == "3.14159"
        pause()


def test_property(connection, server):
    server.service.string_property = "foo"
    x = connection.add_stream(property_get(SERVICE, "StringProperty"))
    for _ in range(5):
        assert x.get() == "foo"
        pause()


def test_property_change_is_pushed(connection, server):
    x = connection.add_stream(property_get(SERVICE, "StringProperty"))
    assert x.get() == "foo"
    server.service.string_property = "bar"
    assert wait_until(lambda: x.get() == "bar")


def test_class_method(connection, server):
    obj = RemoteObject(SERVICE, "TestClass", server.service.create_test_object("bob"))
    x = connection.add_stream(method_call(obj, "FloatToString", 3.14159))
    for _ in range(5):
        assert x.get() == "bob3.14159"
        pause()


def test_class_static_method(connection):
    x = connection.add_stream(static_method_call(SERVICE, "TestClass", "StaticMethod", "foo", ""))
    for _ in range(5):
        assert x.get() == "jebfoo"
        pause()


def test_class_property(connection, server):
    obj = RemoteObject(SERVICE, "TestClass", server.service.create_test_object("jeb", 42))
    x = connection.add_stream(object_property_get(obj, "IntProperty"))
    for _ in range(5):
        assert x.get() == 42
        pause()


def test_counter_increases(connection):
    x = connection.add_stream(call("Counter", "StreamTest.Counter"))
    count = 0
    for _ in range(5):
        assert wait_until(lambda: x.get() > count)
        assert count < x.get()
        count = x.get()
        pause()


def test_nested(connection):
    x0 = connection.add_stream(call("FloatToString", 0.123))
    x1 = connection.add_stream(call("FloatToString", 1.234))
    for _ in range(5):
        assert x0.get() == "0.123"
        assert x1.get() == "1.234"
        pause()


def test_blocking_procedure(connection):
    s = connection.add_stream(call("BlockingProcedure", 10, 0))
    for _ in range(20):
        assert s.get() == 55
        pause()


def test_unknown_procedure_fails_to_start(connection):
    with pytest.raises(StreamStartFailed) as exc_info:
        connection.add_stream(call("NoSuchProcedure"))
    assert exc_info.value.failure.name == "UnknownProcedure"


# =============================================================================
# Lifecycle
# =============================================================================

def test_interleaved(connection):
    s0 = connection.add_stream(call("Int32ToString", 0))
    assert s0.get() == "0"
    pause()
    assert s0.get() == "0"

    s1 = connection.add_stream(call("Int32ToString", 1))
    assert s0.get() == "0"
    assert s1.get() == "1"

    s1.remove()
    assert s0.get() == "0"
    with pytest.raises(StreamRemoved):
        s1.get()

    s2 = connection.add_stream(call("Int32ToString", 2))
    pause()
    assert s0.get() == "0"
    assert s2.get() == "2"

    s0.remove()
    with pytest.raises(StreamRemoved):
        s0.get()
    assert s2.get() == "2"

    s2.remove()
    for s in (s0, s1, s2):
        with pytest.raises(StreamRemoved):
            s.get()


def test_remove_stream_twice(connection, server):
    s = connection.add_stream(call("Int32ToString", 0))
    assert s.get() == "0"
    s.remove()
    with pytest.raises(StreamRemoved):
        s.get()
    s.remove()
    with pytest.raises(StreamRemoved):
        s.get()
    assert wait_until(lambda: server.active_streams == 0)
    assert len(server.stopped) == 1


def test_add_stream_twice(connection, server):
    s0 = connection.add_stream(call("Int32ToString", 42))
    assert s0.get() == "42"
    pause()
    s1 = connection.add_stream(call("Int32ToString", 42))
    assert s0 == s1
    assert s0.get() == "42"
    assert s1.get() == "42"
    assert len(server.started) == 1


# =============================================================================
# Remote failures
# =============================================================================

def test_invalid_operation_immediately(connection):
    s = connection.add_stream(call("ThrowInvalidOperation"))
    with pytest.raises(InvalidOperationError):
        s.get()


def test_invalid_operation_later(connection):
    s = connection.add_stream(call("ThrowInvalidOperationLater"))
    assert s.get() == 0
    with pytest.raises(InvalidOperationError):
        deadline = time.monotonic() + 2.0
        while time.monotonic() < deadline:
            pause()
            s.get()


def test_custom_exception_immediately(connection):
    s = connection.add_stream(call("ThrowCustomException"))
    with pytest.raises(CustomRemoteError) as exc_info:
        s.get()
    assert "A custom kRPC exception" in str(exc_info.value)


# =============================================================================
# wait()
# =============================================================================

def test_wait(connection):
    x = connection.add_stream(call("Counter", "StreamTest.TestWait"))
    with x.condition:
        count = x.get()
        assert count < 10
        while count < 10:
            x.wait()
            assert x.get() > count
            count = x.get()


def test_wait_timeout_short(connection):
    x = connection.add_stream(call("Counter", "StreamTest.TestWaitTimeoutShort"))
    with x.condition:
        count = x.get()
        x.wait(0)
        assert x.get() == count


def test_wait_timeout_long(connection):
    x = connection.add_stream(call("Counter", "StreamTest.TestWaitTimeoutLong"))
    with x.condition:
        count = x.get()
        assert count < 10
        while count < 10:
            x.wait(1.0)
            assert x.get() > count
            count = x.get()


# =============================================================================
# Callbacks
# =============================================================================

def test_callback(connection):
    stop = threading.Event()
    error = []
    first = [None]
    value = [None]
    s = connection.add_stream(call("Counter", "StreamTest.TestCallback"))

    def callback(x):
        if first[0] is None:
            first[0] = value[0] = x
        elif x > first[0] + 10:
            stop.set()
        elif value[0] + 1 != x:
            error.append(x)
            stop.set()
        else:
            value[0] += 1

    s.add_callback(callback)
    s.start()
    assert stop.wait(timeout=5.0)
    s.remove()
    assert error == []


# =============================================================================
# Equality
# =============================================================================

def test_equality(connection):
    s0 = connection.add_stream(call("Counter", "StreamTest.TestEquality0"))
    s1 = connection.add_stream(call("Counter", "StreamTest.TestEquality0"))
    s2 = connection.add_stream(call("Counter", "StreamTest.TestEquality1"))

    assert s0 == s1
    assert s0 != s2
    assert s0 != None  # noqa: E711
    assert hash(s0) == hash(s1)
    assert hash(s0) != hash(s2)


# =============================================================================
# First result delivered as an update
# =============================================================================

def test_first_value_as_update(async_initial_connection):
    manager, server = async_initial_connection
    s = manager.add_stream(call("Int32ToString", 7))
    assert s.get() == "7"
    s.remove()
    with pytest.raises(StreamRemoved):
        s.get()


def test_immediate_failure_as_update(async_initial_connection):
    manager, _ = async_initial_connection
    s = manager.add_stream(call("ThrowInvalidOperation"))
    with pytest.raises(InvalidOperationError):
        s.get()
