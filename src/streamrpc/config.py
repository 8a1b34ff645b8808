"""Stream configuration.

Configuration dataclass for a `StreamManager` and the components it owns.
"""

from dataclasses import dataclass
from typing import Callable, Optional


@dataclass
class StreamConfig:
    """
    Configuration for stream subscriptions and callback delivery.

    Attributes:
        callback_workers: Number of threads running user callbacks. Callbacks
            for one stream never run concurrently; distinct streams share
            the workers.
        first_value_timeout: Seconds `add_stream()` waits for the first value
            before giving up with `StreamTimeout`. None means wait forever.
        request_timeout: Seconds a channel transport waits for the server to
            answer a start request. None means wait forever.
        callback_error_handler: Called with `(descriptor, exception)` for every
            error raised on the callback path, in addition to logging it.
    """
    callback_workers: int = 4
    first_value_timeout: Optional[float] = None
    request_timeout: Optional[float] = 10.0
    callback_error_handler: Optional[Callable] = None

    def __post_init__(self):
        if self.callback_workers < 1:
            raise ValueError("callback_workers must be at least 1")
        if self.first_value_timeout is not None and self.first_value_timeout < 0:
            raise ValueError("first_value_timeout must be non-negative")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
