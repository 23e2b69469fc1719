"""
Socket.IO transport — pub/sub channels over a single python-socketio connection.

This is an adapter for a Socket.IO relay that bridges Pusher Channels; it does
not speak the native Pusher websocket protocol, so point it at the relay, not
at the HotelMate backend directly.

Relay protocol:
- C2S `pusher:subscribe` / `pusher:unsubscribe` with {channel}
- S2C events carry {channel, event, data}; `pusher_internal:*` names are
  re-emitted on the channel as `pusher:*` control frames.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Optional

import socketio
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from hotelmate_realtime.errors import TransportError
from hotelmate_realtime.transport.base import (
    SUBSCRIPTION_ERROR,
    ConnectionState,
    EventCallback,
    GlobalCallback,
)

logger = logging.getLogger(__name__)

SOCKETIO_PATH = "/socket.io/"
RESERVED_EVENTS = ("connect", "disconnect", "connect_error")


class SocketIOChannel:
    def __init__(self, name: str):
        self.name = name
        self.subscribed = False
        self._bindings: dict[str, list[EventCallback]] = {}
        self._global: list[GlobalCallback] = []

    def bind(self, event_name: str, callback: EventCallback) -> None:
        self._bindings.setdefault(event_name, []).append(callback)

    def unbind(self, event_name: str, callback: EventCallback) -> None:
        callbacks = self._bindings.get(event_name, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def bind_global(self, callback: GlobalCallback) -> None:
        self._global.append(callback)

    def unbind_all(self) -> None:
        self._bindings.clear()
        self._global.clear()

    def emit(self, event_name: str, data: Any) -> None:
        """Deliver to named bindings first, then to global listeners."""
        for callback in list(self._bindings.get(event_name, [])):
            callback(data)
        for callback in list(self._global):
            callback(event_name, data)


class SocketIOTransport:
    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        transports: Optional[list[str]] = None,
        socketio_path: str = SOCKETIO_PATH,
        connect_timeout: float = 15.0,
    ):
        self._url = url
        self._token = token
        self._transports = transports or ["websocket"]
        self._socketio_path = socketio_path
        self._connect_timeout = connect_timeout
        self._sio: Optional[socketio.AsyncClient] = None
        self._state = ConnectionState.INITIALIZED
        self._channels: dict[str, SocketIOChannel] = {}
        self._state_handlers: list[Callable[[ConnectionState], None]] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self._sio is not None and self._sio.connected

    @property
    def channels(self) -> dict[str, SocketIOChannel]:
        return dict(self._channels)

    def on_state_change(self, callback: Callable[[ConnectionState], None]) -> Callable[[], None]:
        """Add a connection-state listener. Returns a cleanup function."""
        self._state_handlers.append(callback)

        def remove() -> None:
            try:
                self._state_handlers.remove(callback)
            except ValueError:
                pass

        return remove

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.info("Transport %s -> %s", self._state.value, state.value)
        self._state = state
        for handler in list(self._state_handlers):
            handler(state)

    async def connect(self) -> None:
        if self._sio and self._sio.connected:
            return

        self._sio = socketio.AsyncClient()
        self._set_state(ConnectionState.CONNECTING)

        @self._sio.event
        async def connect() -> None:
            self._set_state(ConnectionState.CONNECTED)
            # Server-side subscriptions do not survive a reconnect.
            for name in list(self._channels):
                await self._send_subscribe(name)

        @self._sio.event
        async def disconnect(_reason: str = "") -> None:
            for channel in self._channels.values():
                channel.subscribed = False
            self._set_state(ConnectionState.DISCONNECTED)

        @self._sio.event
        async def connect_error(data: Any = None) -> None:
            logger.error("Transport connection error: %s", data)
            self._set_state(ConnectionState.FAILED)

        @self._sio.on("*")
        async def on_any(event: str, data: Any = None) -> None:
            if event in RESERVED_EVENTS:
                return
            self._dispatch(event, data)

        try:
            await asyncio.wait_for(
                self._sio.connect(
                    self._url,
                    auth={"token": self._token} if self._token else None,
                    transports=self._transports,
                    socketio_path=self._socketio_path,
                ),
                timeout=self._connect_timeout,
            )
        except (SocketIOConnectionError, asyncio.TimeoutError) as e:
            self._set_state(ConnectionState.FAILED)
            raise TransportError(f"Could not connect to {self._url}: {e}") from e

    def _dispatch(self, event: str, frame: Any) -> None:
        if isinstance(frame, str):
            try:
                frame = json.loads(frame)
            except ValueError:
                logger.warning("Non-JSON frame for %s ignored", event)
                return
        if not isinstance(frame, dict) or "channel" not in frame:
            logger.debug("Frame without channel ignored: %s", event)
            return

        channel = self._channels.get(frame["channel"])
        if channel is None:
            logger.debug("Frame for unsubscribed channel %s ignored", frame["channel"])
            return

        event_name = frame.get("event") or event
        if event_name.startswith("pusher_internal:"):
            event_name = "pusher:" + event_name[len("pusher_internal:"):]
        if event_name == "pusher:subscription_succeeded":
            channel.subscribed = True
        data = frame.get("data")
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except ValueError:
                pass
        channel.emit(event_name, data)

    async def _send_subscribe(self, channel_name: str) -> None:
        try:
            await self._sio.emit("pusher:subscribe", {"channel": channel_name})  # type: ignore[union-attr]
        except Exception as e:
            logger.error("Subscribe to %s failed: %s", channel_name, e)
            channel = self._channels.get(channel_name)
            if channel is not None:
                channel.emit(SUBSCRIPTION_ERROR, {"error": str(e)})

    def _schedule(self, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
            loop.create_task(coro)
        except RuntimeError:
            asyncio.ensure_future(coro)

    def subscribe(self, channel_name: str) -> SocketIOChannel:
        """Return the channel, subscribing on the server when connected."""
        channel = self._channels.get(channel_name)
        if channel is not None:
            return channel
        channel = SocketIOChannel(channel_name)
        self._channels[channel_name] = channel
        if self.connected:
            self._schedule(self._send_subscribe(channel_name))
        return channel

    def unsubscribe(self, channel_name: str) -> None:
        channel = self._channels.pop(channel_name, None)
        if channel is None:
            return
        channel.unbind_all()
        if self.connected:
            self._schedule(self._sio.emit("pusher:unsubscribe", {"channel": channel_name}))  # type: ignore[union-attr]

    async def disconnect(self) -> None:
        for channel in self._channels.values():
            channel.unbind_all()
        self._channels.clear()
        if self._sio:
            await self._sio.disconnect()
            self._sio = None
        self._set_state(ConnectionState.DISCONNECTED)
