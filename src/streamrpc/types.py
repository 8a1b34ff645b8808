"""Message types shared by the stream core and the transports."""

from dataclasses import dataclass
from typing import Any, Optional

from streamrpc.errors import FailureDescription

StreamId = int
"""Server-assigned identifier of a running stream."""


@dataclass(frozen=True)
class StreamResult:
    """Outcome of one evaluation of a streamed call.

    Holds either a value or a failure, never both.
    """
    value: Any = None
    failure: Optional[FailureDescription] = None

    @classmethod
    def of(cls, value: Any) -> "StreamResult":
        return cls(value=value)

    @classmethod
    def failed(cls, failure: FailureDescription) -> "StreamResult":
        return cls(failure=failure)

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass(frozen=True)
class StreamUpdate:
    """An update pushed by the server for one stream."""
    stream_id: StreamId
    result: StreamResult


@dataclass(frozen=True)
class StreamStarted:
    """Reply to a start request.

    `initial` carries the first result when the server returns it with the
    reply. When it is None the first result arrives as a `StreamUpdate`.
    """
    stream_id: StreamId
    initial: Optional[StreamResult] = None
