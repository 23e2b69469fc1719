"""Channel subscription manager against the in-memory transport."""

import pytest

from hotelmate_realtime.channels import (
    ChannelRegistry,
    base_channel_names,
    guest_booking_channel,
    guest_chat_channel,
    staff_chat_channel,
)
from hotelmate_realtime.transport.base import SUBSCRIPTION_ERROR, SUBSCRIPTION_SUCCEEDED

BASE = [
    "acme.attendance",
    "acme.room-service",
    "acme.booking",
    "acme.room-bookings",
    "acme.staff-7-notifications",
]


@pytest.fixture
def received():
    return []


@pytest.fixture
def registry(transport, received):
    return ChannelRegistry(transport, received.append)


def test_channel_names():
    assert base_channel_names("acme", 7) == BASE
    assert base_channel_names("acme") == BASE[:4]
    assert staff_chat_channel("acme", 3) == "acme.staff-chat.3"
    assert guest_chat_channel("acme", "101") == "hotel-acme.guest-chat.101"
    assert guest_booking_channel("acme", "BK-1") == "private-hotel-acme-guest-chat-booking-BK-1"


class TestBaseChannels:
    def test_second_subscribe_is_a_no_op(self, registry, transport):
        registry.subscribe_base_channels("acme", 7)
        second = registry.subscribe_base_channels("acme", 7)
        assert transport.subscribe_calls == BASE
        assert registry.subscription_status() == {"active": True, "channel_count": 5, "channels": BASE}
        second()
        assert registry.active

    def test_cleanup_unbinds_then_unsubscribes(self, registry, transport):
        cleanup = registry.subscribe_base_channels("acme", 7)
        channel = transport.channels["acme.attendance"]
        cleanup()
        assert transport.unsubscribe_calls == BASE
        assert not registry.active
        assert channel._global == []
        registry.subscribe_base_channels("acme", 7)
        assert registry.active

    def test_events_are_forwarded(self, registry, transport, received):
        registry.subscribe_base_channels("acme", 7)
        transport.channels["acme.room-service"].emit("order_created", {"id": 1})
        assert len(received) == 1
        assert received[0].channel == "acme.room-service"
        assert received[0].event_name == "order_created"
        assert received[0].payload == {"id": 1}

    def test_subscription_error_sets_flag(self, registry, transport):
        registry.subscribe_base_channels("acme", 7)
        channel = transport.channels["acme.booking"]
        channel.emit(SUBSCRIPTION_ERROR, {"status": 403})
        assert registry.has_errors
        assert "acme.booking" in registry.errors
        channel.emit(SUBSCRIPTION_SUCCEEDED, {})
        assert not registry.has_errors

    def test_missing_slug_subscribes_nothing(self, registry, transport):
        cleanup = registry.subscribe_base_channels(None, 7)
        cleanup()
        assert transport.subscribe_calls == []

    def test_partial_failure_rolls_back(self, fake_transport_class, received):
        transport = fake_transport_class(fail_on={"acme.booking"})
        registry = ChannelRegistry(transport, received.append)
        registry.subscribe_base_channels("acme", 7)
        assert not registry.active
        assert transport.unsubscribe_calls == ["acme.attendance", "acme.room-service"]
        assert "acme" in registry.errors


class TestConversationChannels:
    def test_reference_counted(self, registry, transport):
        first = registry.subscribe_to_conversation("acme", 3)
        second = registry.subscribe_to_conversation("acme", 3)
        assert transport.subscribe_calls == ["acme.staff-chat.3"]
        first()
        first()
        assert transport.unsubscribe_calls == []
        second()
        assert transport.unsubscribe_calls == ["acme.staff-chat.3"]

    def test_independent_conversations(self, registry, transport):
        close_3 = registry.subscribe_to_conversation("acme", 3)
        registry.subscribe_to_conversation("acme", 4)
        close_3()
        assert "acme.staff-chat.4" in transport.channels
        assert registry.channel_names() == ["acme.staff-chat.4"]

    def test_guest_chat_channel(self, registry, transport, received):
        registry.subscribe_to_guest_chat("acme", "101")
        transport.channels["hotel-acme.guest-chat.101"].emit("guest_message_created", {"id": 1})
        assert received[0].channel == "hotel-acme.guest-chat.101"

    def test_missing_ids_are_no_ops(self, registry, transport):
        registry.subscribe_to_conversation("acme", None)()
        registry.subscribe_to_guest_chat(None, "101")()
        assert transport.subscribe_calls == []


class TestGuestBookingChannel:
    def test_repeat_call_returns_existing_cleanup(self, registry, transport):
        first = registry.subscribe_to_guest_chat_booking("acme", "BK-1", "tok")
        again = registry.subscribe_to_guest_chat_booking("acme", "BK-1", "tok")
        assert first is again
        assert transport.subscribe_calls == ["private-hotel-acme-guest-chat-booking-BK-1"]

    def test_only_the_named_event_is_forwarded(self, registry, transport, received):
        registry.subscribe_to_guest_chat_booking("acme", "BK-1", "tok", event_name="realtime_event")
        channel = transport.channels["private-hotel-acme-guest-chat-booking-BK-1"]
        channel.emit("realtime_event", {"id": 1})
        channel.emit("other", {"id": 2})
        assert [r.payload for r in received] == [{"id": 1}]

    def test_error_allows_a_fresh_subscription(self, registry, transport):
        registry.subscribe_to_guest_chat_booking("acme", "BK-1", "tok")
        transport.channels["private-hotel-acme-guest-chat-booking-BK-1"].emit(SUBSCRIPTION_ERROR, "denied")
        registry.subscribe_to_guest_chat_booking("acme", "BK-1", "tok")
        assert len(transport.subscribe_calls) == 2


def test_close_releases_everything(registry, transport):
    registry.subscribe_base_channels("acme", 7)
    registry.subscribe_to_conversation("acme", 3)
    registry.subscribe_to_guest_chat_booking("acme", "BK-1", "tok")
    registry.close()
    assert transport.channels == {}
    assert registry.subscription_status() == {"active": False, "channel_count": 0, "channels": []}
