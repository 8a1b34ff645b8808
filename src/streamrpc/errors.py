"""Error types for `streamrpc`.

Stream errors are split in two families. `StreamError` covers the local
lifecycle of a subscription (removed, timed out, rejected by the server).
`RemoteFailure` wraps an error raised by the remote computation itself; it is
cached on the stream like any other result and re-raised from `get()`.
"""

import threading
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class FailureDescription:
    """Description of an error raised on the remote side.

    Attributes:
        name: Remote error type name, used to select the local exception class.
        message: Human readable error message.
        service: Service that raised the error, if known.
        stack_trace: Remote stack trace, if the server sent one.
    """
    name: str
    message: str
    service: Optional[str] = None
    stack_trace: Optional[str] = None

    def to_exception(self) -> "RemoteFailure":
        """Build the local exception for this failure."""
        cls = _remote_errors.get(self.name, RemoteFailure)
        return cls(self)


class StreamError(Exception):
    """Base class for stream lifecycle errors."""
    pass


class StreamRemoved(StreamError):
    """Raised when reading from a stream that has been removed."""
    def __init__(self, descriptor=None):
        self.descriptor = descriptor
        target = f" for {descriptor}" if descriptor is not None else ""
        super().__init__(f"Stream{target} has been removed")


class StreamTimeout(StreamError):
    """Raised when a stream's first value does not arrive in time."""
    def __init__(self, descriptor, timeout_seconds):
        self.descriptor = descriptor
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"No value for {descriptor} within {timeout_seconds}s"
        )


class StreamStartFailed(StreamError):
    """Raised when the server refuses to start a stream."""
    def __init__(self, descriptor, failure: FailureDescription):
        self.descriptor = descriptor
        self.failure = failure
        super().__init__(
            f"Failed to start stream for {descriptor}: {failure.name}: {failure.message}"
        )


class RemoteFailure(Exception):
    """Raised when the remote computation behind a stream failed."""
    def __init__(self, failure: FailureDescription):
        self.failure = failure
        super().__init__(f"{failure.name}: {failure.message}")

    @property
    def name(self) -> str:
        return self.failure.name

    @property
    def message(self) -> str:
        return self.failure.message


class TransportFailure(RemoteFailure):
    """The connection carrying stream updates failed.

    Cached on every active stream when the transport breaks. No further
    updates will arrive for those streams.
    """
    pass


TRANSPORT_FAILURE_NAME = "TransportFailure"


# Remote error name -> local exception class
_remote_errors: dict[str, type[RemoteFailure]] = {
    TRANSPORT_FAILURE_NAME: TransportFailure,
}
_remote_errors_lock = threading.Lock()


def register_remote_error(name: str, cls: type[RemoteFailure]) -> None:
    """Raise `cls` for remote failures called `name`.

    Example:
        ```python
        class InvalidOperationError(RemoteFailure):
            pass

        register_remote_error("InvalidOperation", InvalidOperationError)
        ```
    """
    if not (isinstance(cls, type) and issubclass(cls, RemoteFailure)):
        raise TypeError(f"{cls!r} is not a RemoteFailure subclass")
    with _remote_errors_lock:
        _remote_errors[name] = cls


def unregister_remote_error(name: str) -> None:
    """Remove a mapping added with `register_remote_error`."""
    if name == TRANSPORT_FAILURE_NAME:
        raise ValueError(f"Cannot unregister built-in error '{name}'")
    with _remote_errors_lock:
        _remote_errors.pop(name, None)
