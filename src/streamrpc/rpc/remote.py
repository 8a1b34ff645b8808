"""Remote RPC.

Channel for communication over the network using WebSockets.

`WebSocketChannel` is the async channel. `SyncWebSocketChannel` drives one
from a private event loop thread and exposes the blocking `SyncRPCChannel`
interface, so it can back a `ChannelTransport`.

**Requires**: `websockets` package (`pip install websockets`)

Usage:
    ```python
    from streamrpc import StreamManager
    from streamrpc.rpc.remote import connect_sync
    from streamrpc.rpc.transport import ChannelTransport

    channel = connect_sync("ws://localhost:8080")
    with StreamManager(ChannelTransport(channel)) as manager:
        stream = manager.add_stream(descriptor)
    ```
"""

import asyncio
import json
import pickle
import threading
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Optional

from streamrpc.rpc.base import (
    ChannelBroken,
    ChannelClosed,
    RecvTimeout,
    RPC_KEY_BROKEN,
    RPC_KEY_ERROR,
    RPC_KEY_SHUTDOWN,
)


def _require_websockets():
    try:
        import websockets
    except ImportError:
        raise ImportError(
            "websockets package required. Install with: pip install websockets"
        )
    return websockets


class WebSocketChannel:
    """Async RPC channel over a WebSocket connection.

    Messages are serialized using pickle (for data) wrapped in JSON (for metadata).

    Wire format:
        {"key": str, "data_hex": str}
        where data_hex is hex-encoded pickled data
    """

    def __init__(self, websocket):
        """Create a channel from a websocket connection.

        Args:
            websocket: A websockets WebSocket connection
        """
        self._ws = websocket
        self._closed = False
        self._recv_queue: asyncio.Queue = asyncio.Queue()
        self._recv_task: asyncio.Task | None = None

    async def _start_receiver(self) -> None:
        if self._recv_task is None:
            self._recv_task = asyncio.create_task(self._receiver_loop())

    async def _receiver_loop(self) -> None:
        """Background task that receives messages and queues them."""
        try:
            async for message in self._ws:
                try:
                    data = json.loads(message)
                    key = data["key"]
                    payload = pickle.loads(bytes.fromhex(data["data_hex"]))
                    await self._recv_queue.put((key, payload))
                except Exception as e:
                    await self._recv_queue.put((RPC_KEY_ERROR, str(e)))
            if not self._closed:
                await self._recv_queue.put((RPC_KEY_BROKEN, "Connection closed by peer"))
        except Exception as e:
            if not self._closed:
                await self._recv_queue.put((RPC_KEY_BROKEN, str(e)))

    async def send(self, key: str, data: Any) -> None:
        """Send a message."""
        if self._closed:
            raise ChannelClosed("Channel is closed")

        try:
            message = json.dumps({
                "key": key,
                "data_hex": pickle.dumps(data).hex(),
            })
            await self._ws.send(message)
        except Exception as e:
            self._closed = True
            raise ChannelBroken(f"Failed to send: {e}")

    async def recv(self, timeout: float | None = None) -> tuple[str, Any]:
        """Receive a message with optional timeout."""
        if self._closed and self._recv_queue.empty():
            raise ChannelClosed("Channel is closed")

        await self._start_receiver()

        try:
            if timeout is None:
                result = await self._recv_queue.get()
            else:
                result = await asyncio.wait_for(
                    self._recv_queue.get(),
                    timeout=timeout,
                )
        except asyncio.TimeoutError:
            raise RecvTimeout(f"Receive timed out after {timeout}s")

        return self._check(result)

    async def try_recv(self) -> tuple[str, Any] | None:
        """Non-blocking receive."""
        if self._closed and self._recv_queue.empty():
            raise ChannelClosed("Channel is closed")

        await self._start_receiver()

        try:
            result = self._recv_queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

        return self._check(result)

    def _check(self, result: tuple[str, Any]) -> tuple[str, Any]:
        key, data = result
        if key == RPC_KEY_SHUTDOWN:
            self._closed = True
            raise ChannelClosed("Channel was shut down")
        if key == RPC_KEY_BROKEN:
            self._closed = True
            raise ChannelBroken(f"Connection broken: {data}")
        if key == RPC_KEY_ERROR:
            raise ChannelBroken(f"Receive error: {data}")
        return key, data

    async def close(self) -> None:
        """Close the channel.

        Pending `recv()` calls are released with `ChannelClosed`.
        """
        if self._closed:
            return
        self._closed = True
        try:
            await self._ws.send(json.dumps({
                "key": RPC_KEY_SHUTDOWN,
                "data_hex": pickle.dumps(None).hex(),
            }))
        except Exception:
            pass
        try:
            await self._ws.close()
        except Exception:
            pass
        if self._recv_task and not self._recv_task.done():
            self._recv_task.cancel()
            try:
                await self._recv_task
            except asyncio.CancelledError:
                pass
        await self._recv_queue.put((RPC_KEY_SHUTDOWN, None))

    @property
    def is_closed(self) -> bool:
        """Whether the channel is closed."""
        return self._closed


async def connect_channel(url: str) -> WebSocketChannel:
    """Connect to a WebSocket RPC server.

    Returns:
        WebSocketChannel for communication with the server.
        Caller is responsible for closing the channel.
    """
    websockets = _require_websockets()

    try:
        websocket = await websockets.connect(url)
    except Exception as e:
        raise ConnectionError(f"Failed to connect to {url}: {e}")

    return WebSocketChannel(websocket)


class SyncWebSocketChannel:
    """Blocking wrapper around a `WebSocketChannel`.

    The async channel lives on an event loop run by a private daemon thread.
    Thread-safe.
    """

    def __init__(
        self,
        channel: WebSocketChannel,
        loop: asyncio.AbstractEventLoop,
        loop_thread: threading.Thread,
    ):
        self._channel = channel
        self._loop = loop
        self._loop_thread = loop_thread
        self._lock = threading.Lock()
        self._closed = False

    def _run(self, coro, timeout: Optional[float] = None):
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result(timeout)

    def send(self, key: str, data: Any) -> None:
        """Send a message."""
        if self._closed:
            raise ChannelClosed("Channel is closed")
        self._run(self._channel.send(key, data))

    def recv(self, timeout: float | None = None) -> tuple[str, Any]:
        """Receive a message with optional timeout."""
        if self._closed:
            raise ChannelClosed("Channel is closed")
        return self._run(self._channel.recv(timeout))

    def try_recv(self) -> tuple[str, Any] | None:
        """Non-blocking receive."""
        if self._closed:
            raise ChannelClosed("Channel is closed")
        return self._run(self._channel.try_recv())

    def close(self, timeout: float = 5.0) -> None:
        """Close the connection and stop the event loop thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._run(self._channel.close(), timeout)
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            if self._loop_thread is not threading.current_thread():
                self._loop_thread.join(timeout)

    @property
    def is_closed(self) -> bool:
        return self._closed or self._channel.is_closed


def connect_sync(url: str, timeout: float | None = 10.0) -> SyncWebSocketChannel:
    """Connect to a WebSocket RPC server from synchronous code.

    Args:
        url: WebSocket URL (e.g., "ws://host:port")
        timeout: Seconds to wait for the connection

    Returns:
        SyncWebSocketChannel. Caller is responsible for closing it.
    """
    loop = asyncio.new_event_loop()
    loop_thread = threading.Thread(
        target=loop.run_forever,
        name=f"WebSocketLoop-{url}",
        daemon=True,
    )
    loop_thread.start()
    try:
        channel = asyncio.run_coroutine_threadsafe(connect_channel(url), loop).result(timeout)
    except BaseException:
        loop.call_soon_threadsafe(loop.stop)
        loop_thread.join(timeout)
        raise
    return SyncWebSocketChannel(channel, loop, loop_thread)


ConnectionHandler = Callable[[WebSocketChannel], Awaitable[None]]
"""Type for connection handler functions."""


@asynccontextmanager
async def serve_background(
    handler: ConnectionHandler,
    host: str = "0.0.0.0",
    port: int = 8080,
):
    """Run a WebSocket RPC server in the background.

    Starts the server and yields control. Server stops when context exits.

    Args:
        handler: Async function called for each connection with a WebSocketChannel
        host: Host to bind to (default all interfaces)
        port: Port to listen on

    Yields:
        The websockets server object (for inspection).
    """
    websockets = _require_websockets()

    async def handle_connection(websocket):
        channel = WebSocketChannel(websocket)
        try:
            await handler(channel)
        except ChannelClosed:
            pass
        finally:
            if not channel.is_closed:
                await channel.close()

    server = await websockets.serve(handle_connection, host, port)
    try:
        yield server
    finally:
        server.close()
        await server.wait_closed()
