"""
Transport contracts consumed by the channel registry.

A Transport hands out named Channels; each Channel delivers (event_name, data)
pairs to its bound callbacks. Connection management, retry and backoff live
behind this interface.
"""

from enum import Enum
from typing import Any, Callable, Protocol

EventCallback = Callable[[Any], None]
GlobalCallback = Callable[[str, Any], None]


class ConnectionState(str, Enum):
    INITIALIZED = "initialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


SUBSCRIPTION_SUCCEEDED = "pusher:subscription_succeeded"
SUBSCRIPTION_ERROR = "pusher:subscription_error"


class Channel(Protocol):
    name: str

    def bind(self, event_name: str, callback: EventCallback) -> None: ...

    def unbind(self, event_name: str, callback: EventCallback) -> None: ...

    def bind_global(self, callback: GlobalCallback) -> None: ...

    def unbind_all(self) -> None: ...


class Transport(Protocol):
    @property
    def state(self) -> ConnectionState: ...

    def subscribe(self, channel_name: str) -> Channel: ...

    def unsubscribe(self, channel_name: str) -> None: ...

    def on_state_change(self, callback: Callable[[ConnectionState], None]) -> Callable[[], None]: ...
