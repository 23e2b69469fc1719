"""Shared fakes: an in-memory transport and canned REST APIs."""

from typing import Any, Callable, Optional

import pytest

from hotelmate_realtime.errors import ApiError
from hotelmate_realtime.models.envelope import Category, Envelope, EventMeta
from hotelmate_realtime.transport.base import ConnectionState
from hotelmate_realtime.transport.socketio import SocketIOChannel


class FakeTransport:
    """Hands out real SocketIOChannel objects; tests drive them with channel.emit()."""

    def __init__(self, fail_on: Optional[set] = None):
        self.state = ConnectionState.CONNECTED
        self.channels: dict[str, SocketIOChannel] = {}
        self.subscribe_calls: list[str] = []
        self.unsubscribe_calls: list[str] = []
        self.fail_on = fail_on or set()
        self.disconnected = False

    def subscribe(self, channel_name: str) -> SocketIOChannel:
        self.subscribe_calls.append(channel_name)
        if channel_name in self.fail_on:
            raise RuntimeError(f"subscribe refused: {channel_name}")
        channel = self.channels.get(channel_name)
        if channel is None:
            channel = self.channels[channel_name] = SocketIOChannel(channel_name)
        return channel

    def unsubscribe(self, channel_name: str) -> None:
        self.unsubscribe_calls.append(channel_name)
        channel = self.channels.pop(channel_name, None)
        if channel is not None:
            channel.unbind_all()

    def on_state_change(self, callback):
        return lambda: None

    async def disconnect(self) -> None:
        self.disconnected = True
        self.channels.clear()


class FakeGuestAPI:
    """Guest chat endpoints over an in-memory history sorted by id."""

    def __init__(self, context: Optional[dict[str, Any]] = None, history: Optional[list[dict[str, Any]]] = None):
        self.context = context if context is not None else {
            "conversation_id": 9,
            "pusher": {"channel": "private-hotel-acme-guest-chat-booking-77", "event": "realtime_event"},
        }
        self.history = list(history or [])
        self.sent: list[dict[str, Any]] = []
        self.fetches: list[Optional[Any]] = []
        self.send_error: Optional[Exception] = None
        self.send_response: Any = None
        self.on_send: Optional[Callable[[str], None]] = None

    async def get_context(self) -> dict[str, Any]:
        return dict(self.context)

    async def get_messages(self, limit: int = 50, before: Optional[Any] = None) -> list[dict[str, Any]]:
        self.fetches.append(before)
        messages = self.history
        if before is not None:
            messages = [m for m in messages if m["id"] < before]
        return [dict(m) for m in messages[-limit:]]

    async def send_message(self, message: str, client_message_id: str, reply_to: Optional[Any] = None) -> Any:
        self.sent.append({"message": message, "client_message_id": client_message_id, "reply_to": reply_to})
        if self.on_send is not None:
            self.on_send(client_message_id)
        if self.send_error is not None:
            raise self.send_error
        return self.send_response


class FakeHotelAPI:
    """Bulk fetchers returning canned lists. Names in `failures` raise ApiError."""

    def __init__(self, **resources: list[dict[str, Any]]):
        self.resources = resources
        self.failures: set[str] = set()
        self.marked: list[tuple[Any, str]] = []

    async def _get(self, name: str) -> list[dict[str, Any]]:
        if name in self.failures:
            raise ApiError(f"HTTP 500: {name}", status_code=500)
        return list(self.resources.get(name, []))

    async def staff_conversations(self):
        return await self._get("staff_conversations")

    async def guest_conversations(self):
        return await self._get("guest_conversations")

    async def room_service_orders(self):
        return await self._get("orders")

    async def service_bookings(self):
        return await self._get("service_bookings")

    async def room_bookings(self):
        return await self._get("room_bookings")

    async def staff(self):
        return await self._get("staff")

    async def mark_conversation_read(self, conversation_id: Any, conversation_type: str = "guest") -> None:
        if "mark_read" in self.failures:
            raise ApiError("HTTP 403: forbidden", status_code=403)
        self.marked.append((conversation_id, conversation_type))


def make_envelope(category: Category, event_type: str, payload: dict[str, Any], **meta: Any) -> Envelope:
    return Envelope(category=category, type=event_type, payload=payload, meta=EventMeta(**meta))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def guest_api() -> FakeGuestAPI:
    return FakeGuestAPI()


@pytest.fixture
def envelope():
    return make_envelope


@pytest.fixture
def fake_transport_class():
    return FakeTransport


@pytest.fixture
def hotel_api_class():
    return FakeHotelAPI
