"""
Envelope normalizer — raw transport payloads to canonical Envelopes.

Two raw shapes are accepted (see models.envelope.RawEvent). Anything that
cannot be turned into a routable envelope returns None; transport control
frames are dropped without a warning.
"""

import json
import logging
from typing import Any, Optional, Union

from pydantic import ValidationError

from hotelmate_realtime.models.envelope import (
    Category,
    ChannelDelivery,
    Envelope,
    EventMeta,
    PushNotification,
    RawEvent,
)
from hotelmate_realtime.stores.staff_chat import STAFF_CHAT_EVENT_PREFIX

logger = logging.getLogger(__name__)

CONTROL_PREFIXES = ("pusher:", "pusher_internal:")

# Push `data.type` -> (category, canonical type)
PUSH_TYPES: dict[str, tuple[Category, str]] = {
    "staff_chat_message": (Category.STAFF_CHAT, "message_created"),
    "staff_chat_mention": (Category.STAFF_CHAT, "message_created"),
    "staff_chat_file": (Category.STAFF_CHAT, "message_created"),
    "unread_count_update": (Category.STAFF_CHAT, "unread_updated"),
    "room_service_order": (Category.ROOM_SERVICE, "order_created"),
    "new_room_service_order": (Category.ROOM_SERVICE, "order_created"),
    "new_breakfast_order": (Category.ROOM_SERVICE, "order_created"),
    "order_status_update": (Category.ROOM_SERVICE, "order_status_changed"),
    "new_booking": (Category.BOOKING, "booking_created"),
    "new_dinner_booking": (Category.BOOKING, "booking_created"),
    "booking_update": (Category.BOOKING, "booking_updated"),
    "room_booking_created": (Category.ROOM_BOOKING, "booking_created"),
    "room_booking_update": (Category.ROOM_BOOKING, "booking_updated"),
    "clock_status_update": (Category.ATTENDANCE, "clock_status_updated"),
    "timesheet_approved": (Category.ATTENDANCE, "timesheet-approved"),
    "timesheet_rejected": (Category.ATTENDANCE, "timesheet-rejected"),
}

# Push fields that arrive as JSON-encoded strings.
JSON_FIELDS = ("message_data", "order_data", "booking_data")

# Hotel-wide channel suffix -> category. Conversation channels are matched separately.
CHANNEL_SUFFIXES: dict[str, Category] = {
    ".attendance": Category.ATTENDANCE,
    ".room-service": Category.ROOM_SERVICE,
    ".booking": Category.BOOKING,
    ".room-bookings": Category.ROOM_BOOKING,
}


def is_control_frame(event_name: Optional[str]) -> bool:
    return bool(event_name) and event_name.startswith(CONTROL_PREFIXES)


def effective_type(category: Category, payload_type: str, event_name: Optional[str]) -> str:
    """Staff chat transport event names outrank the coarser payload type."""
    if category != Category.STAFF_CHAT or not event_name or event_name == payload_type:
        return payload_type
    if is_control_frame(event_name):
        return payload_type
    if event_name.startswith(STAFF_CHAT_EVENT_PREFIX):
        return event_name
    if len(event_name) > len(payload_type) and payload_type in event_name:
        return event_name
    return payload_type


def channel_scope(channel: Optional[str]) -> tuple[Optional[Category], dict[str, Any]]:
    """Category and entity scope implied by a channel name."""
    if not channel:
        return None, {}
    if "-guest-chat-booking-" in channel:
        return Category.GUEST_CHAT, {"booking_id": channel.rsplit("-guest-chat-booking-", 1)[1]}
    if ".staff-chat." in channel:
        return Category.STAFF_CHAT, {"conversation_id": channel.rsplit(".staff-chat.", 1)[1]}
    if ".guest-chat." in channel:
        return Category.GUEST_CHAT, {"room_pin": channel.rsplit(".guest-chat.", 1)[1]}
    for suffix, category in CHANNEL_SUFFIXES.items():
        if channel.endswith(suffix):
            return category, {}
    return None, {}


def category_for_event(event_name: str) -> Optional[Category]:
    """Best guess for events on personal channels, which carry several domains."""
    if event_name.startswith(STAFF_CHAT_EVENT_PREFIX):
        return Category.STAFF_CHAT
    if event_name in PUSH_TYPES:
        return PUSH_TYPES[event_name][0]
    for marker, category in (
        ("timesheet", Category.ATTENDANCE),
        ("clock", Category.ATTENDANCE),
        ("log-", Category.ATTENDANCE),
        ("log_", Category.ATTENDANCE),
        ("order", Category.ROOM_SERVICE),
    ):
        if marker in event_name:
            return category
    return None


def _decode_json_fields(data: dict[str, Any]) -> dict[str, Any]:
    decoded = dict(data)
    for key in JSON_FIELDS:
        value = decoded.get(key)
        if isinstance(value, str):
            try:
                decoded[key] = json.loads(value)
            except ValueError:
                logger.warning("Push field %s is not valid JSON, kept as string", key)
    return decoded


def _finish(category: Any, event_type: Any, payload: Any, meta: EventMeta) -> Optional[Envelope]:
    if not event_type:
        logger.warning("Envelope without type dropped (category=%s, channel=%s)", category, meta.channel)
        return None
    try:
        envelope = Envelope(category=category, type=event_type, payload=payload or {}, meta=meta)
    except ValidationError as e:
        logger.warning("Malformed envelope dropped (%s/%s): %s", category, event_type, e.errors()[0]["msg"])
        return None
    if envelope.entity_id is None:
        logger.warning("Envelope %s/%s has no entity id, dropped", envelope.category.value, envelope.type)
        return None
    return envelope


def normalize_push(raw: PushNotification) -> Optional[Envelope]:
    data = raw.data or {}
    push_type = data.get("type")
    mapped = PUSH_TYPES.get(push_type)
    if mapped is None:
        logger.info("Unmapped push type ignored: %s", push_type)
        return None
    category, event_type = mapped

    payload = {k: v for k, v in _decode_json_fields(data).items() if k != "type"}
    nested = payload.pop("message_data", None)
    if isinstance(nested, dict):
        payload.setdefault("message", nested)
    for key in ("order_data", "booking_data"):
        nested = payload.pop(key, None)
        if isinstance(nested, dict):
            payload = {**nested, **payload}
    if raw.notification:
        payload.setdefault("notification", raw.notification)

    meta = EventMeta(
        event_id=data.get("event_id"),
        source="push",
        event_name=push_type,
        ts=data.get("timestamp"),
    )
    return _finish(category, event_type, payload, meta)


def normalize_channel(raw: ChannelDelivery) -> Optional[Envelope]:
    if is_control_frame(raw.event_name):
        logger.debug("Control frame skipped: %s on %s", raw.event_name, raw.channel)
        return None

    body = raw.payload
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            logger.warning("Non-JSON payload on %s/%s dropped", raw.channel, raw.event_name)
            return None
    if not isinstance(body, dict):
        logger.warning("Unexpected payload type %s on %s/%s", type(body).__name__, raw.channel, raw.event_name)
        return None

    inferred, scope = channel_scope(raw.channel)

    # Backend-normalized envelope: {category, type, payload, meta}
    if body.get("category") and isinstance(body.get("payload", body.get("data")), dict):
        wrapped_meta = body.get("meta") or {}
        meta = EventMeta(**{
            **wrapped_meta,
            "channel": wrapped_meta.get("channel") or raw.channel,
            "event_name": raw.event_name,
            "source": wrapped_meta.get("source") or raw.source,
            "scope": {**scope, **(wrapped_meta.get("scope") or {})},
        })
        event_type = body.get("type") or body.get("eventType")
        try:
            category = Category(body["category"])
        except ValueError:
            logger.warning("Unknown category dropped: %s", body["category"])
            return None
        if event_type:
            event_type = effective_type(category, event_type, raw.event_name)
        return _finish(category, event_type, body.get("payload", body.get("data")), meta)

    # Bare domain object: the channel and event name carry the routing.
    category = inferred or category_for_event(raw.event_name)
    if category is None:
        logger.warning("Cannot infer category for %s on %s, dropped", raw.event_name, raw.channel)
        return None
    meta = EventMeta(
        event_id=body.get("event_id"),
        channel=raw.channel,
        event_name=raw.event_name,
        source=raw.source,
        ts=body.get("timestamp") or body.get("created_at"),
        scope=scope,
    )
    return _finish(category, raw.event_name, body, meta)


def parse_raw(raw: Union[RawEvent, dict[str, Any]]) -> Optional[RawEvent]:
    """Parse a raw dict into one of the two transport shapes, or None."""
    if isinstance(raw, (PushNotification, ChannelDelivery)):
        return raw
    if not isinstance(raw, dict):
        logger.warning("Raw event is not a mapping: %r", type(raw).__name__)
        return None
    try:
        if raw.get("kind") == "push" or ("data" in raw and "eventName" not in raw and "event_name" not in raw):
            return PushNotification.model_validate(raw)
        return ChannelDelivery.model_validate(raw)
    except ValidationError as e:
        logger.warning("Unparseable raw event dropped: %s", e.errors()[0]["msg"])
        return None


def normalize(raw: Union[RawEvent, dict[str, Any]]) -> Optional[Envelope]:
    """Convert one raw transport event into an Envelope, or None if it must be dropped."""
    parsed = parse_raw(raw)
    if parsed is None:
        return None
    if isinstance(parsed, PushNotification):
        return normalize_push(parsed)
    return normalize_channel(parsed)
