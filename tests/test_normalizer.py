"""Envelope normalizer: push payloads, channel deliveries, control frames, drops."""

import json
import logging

from hotelmate_realtime.models.envelope import Category, ChannelDelivery
from hotelmate_realtime.normalizer import (
    category_for_event,
    channel_scope,
    effective_type,
    is_control_frame,
    normalize,
)


def delivery(channel, event_name, payload):
    return {"channel": channel, "eventName": event_name, "payload": payload}


class TestPush:
    def test_staff_chat_message_with_json_encoded_body(self):
        raw = {
            "data": {
                "type": "staff_chat_message",
                "conversation_id": "12",
                "message_data": json.dumps({"id": 88, "message": "hi"}),
                "event_id": "e1",
            },
            "notification": {"title": "New message", "body": "hi"},
        }
        env = normalize(raw)
        assert env.category == Category.STAFF_CHAT
        assert env.type == "message_created"
        assert env.payload["message"] == {"id": 88, "message": "hi"}
        assert env.payload["notification"]["title"] == "New message"
        assert env.entity_id == "12"
        assert env.meta.event_id == "e1"
        assert env.meta.source == "push"

    def test_order_data_is_flattened_into_payload(self):
        raw = {"data": {"type": "order_status_update", "order_id": "5",
                        "order_data": json.dumps({"id": 5, "status": "ready"})}}
        env = normalize(raw)
        assert env.category == Category.ROOM_SERVICE
        assert env.type == "order_status_changed"
        assert env.payload["status"] == "ready"
        assert env.entity_id == "5"

    def test_unknown_push_type_is_dropped(self):
        assert normalize({"data": {"type": "marketing_blast", "id": "1"}}) is None


class TestChannelDelivery:
    def test_wrapped_envelope_passes_through(self):
        raw = delivery("acme.room-service", "order_created", {
            "category": "room_service",
            "type": "order_created",
            "payload": {"id": 5, "status": "pending"},
            "meta": {"event_id": "x1"},
        })
        env = normalize(raw)
        assert env.category == Category.ROOM_SERVICE
        assert env.type == "order_created"
        assert env.entity_id == 5
        assert env.meta.event_id == "x1"
        assert env.meta.channel == "acme.room-service"
        assert env.meta.event_name == "order_created"

    def test_staff_chat_transport_event_name_wins(self):
        raw = delivery("acme.staff-chat.3", "realtime_staff_chat_message_created", {
            "category": "staff_chat",
            "type": "message_created",
            "payload": {"conversation_id": 3, "id": 1},
        })
        assert normalize(raw).type == "realtime_staff_chat_message_created"

    def test_event_name_override_only_applies_to_staff_chat(self):
        assert effective_type(Category.ROOM_SERVICE, "order_created", "realtime_order_created_v2") == "order_created"
        assert effective_type(Category.STAFF_CHAT, "message_created", "message_created") == "message_created"
        assert effective_type(Category.STAFF_CHAT, "message_created", "new-message") == "message_created"
        assert effective_type(Category.STAFF_CHAT, "message", "message_created") == "message_created"

    def test_bare_object_on_hotel_channel(self):
        raw = delivery("acme.attendance", "clock-status-updated",
                       {"staff_id": 42, "department": "Kitchen", "duty_status": "on_duty"})
        env = normalize(raw)
        assert env.category == Category.ATTENDANCE
        assert env.type == "clock-status-updated"
        assert env.entity_id == 42

    def test_string_payload_is_parsed(self):
        raw = delivery("acme.booking", "booking_created", json.dumps({"id": 7, "date": "2026-10-19"}))
        env = normalize(raw)
        assert env.category == Category.BOOKING
        assert env.entity_id == 7

    def test_personal_channel_infers_category_from_event(self):
        raw = delivery("acme.staff-5-notifications", "realtime_staff_chat_unread_updated",
                       {"conversation_id": 3, "unread_count": 2})
        env = normalize(raw)
        assert env.category == Category.STAFF_CHAT
        assert env.type == "realtime_staff_chat_unread_updated"

    def test_booking_channel_scope_reaches_meta(self):
        raw = delivery("private-hotel-acme-guest-chat-booking-77", "realtime_event", {
            "category": "guest_chat",
            "type": "message_created",
            "payload": {"conversation_id": 9, "id": 1},
        })
        env = normalize(raw)
        assert env.meta.scope == {"booking_id": "77"}

    def test_accepts_parsed_channel_delivery(self):
        raw = ChannelDelivery(channel="acme.room-service", event_name="order_created", payload={"id": 2})
        assert normalize(raw).entity_id == 2


class TestDrops:
    def test_control_frames_are_dropped_silently(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="hotelmate_realtime"):
            assert normalize(delivery("acme.attendance", "pusher:subscription_succeeded", {})) is None
            assert normalize(delivery("acme.attendance", "pusher_internal:subscription_succeeded", {})) is None
        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]

    def test_missing_type_logs_one_warning(self, caplog):
        raw = delivery("hotel-acme.guest-chat.101", "realtime_event", {
            "category": "guest_chat",
            "payload": {"conversation_id": 9, "id": 1},
        })
        with caplog.at_level(logging.WARNING, logger="hotelmate_realtime"):
            assert normalize(raw) is None
        assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 1

    def test_missing_entity_id_is_dropped(self):
        raw = delivery("acme.room-service", "order_created", {
            "category": "room_service",
            "type": "order_created",
            "payload": {"status": "pending"},
        })
        assert normalize(raw) is None

    def test_unknown_category_is_dropped(self):
        raw = delivery("acme.spa", "treatment_booked", {"category": "spa", "type": "x", "payload": {"id": 1}})
        assert normalize(raw) is None

    def test_uninferable_channel_is_dropped(self):
        assert normalize(delivery("acme.lobby", "door_opened", {"id": 1})) is None

    def test_non_json_string_payload_is_dropped(self):
        assert normalize(delivery("acme.booking", "booking_created", "not json")) is None

    def test_non_mapping_raw_is_dropped(self):
        assert normalize("garbage") is None
        assert normalize({"channel": "acme.booking"}) is None


def test_channel_scope():
    assert channel_scope("acme.staff-chat.3") == (Category.STAFF_CHAT, {"conversation_id": "3"})
    assert channel_scope("hotel-acme.guest-chat.101") == (Category.GUEST_CHAT, {"room_pin": "101"})
    assert channel_scope("acme.room-bookings") == (Category.ROOM_BOOKING, {})
    assert channel_scope("acme.booking") == (Category.BOOKING, {})
    assert channel_scope(None) == (None, {})


def test_category_for_event():
    assert category_for_event("timesheet-approved") == Category.ATTENDANCE
    assert category_for_event("new_room_service_order") == Category.ROOM_SERVICE
    assert category_for_event("something_else") is None


def test_is_control_frame():
    assert is_control_frame("pusher:subscription_error")
    assert not is_control_frame("order_created")
    assert not is_control_frame(None)
