"""
Canonical realtime envelope and the raw transport shapes it is parsed from.

Envelope = {category, type, payload, meta}. Raw input is one of:
- PushNotification: {data: {type, ...flat fields}, notification: {title, body}}
- ChannelDelivery:  {channel, eventName, payload}
"""

from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Category(str, Enum):
    STAFF_CHAT = "staff_chat"
    GUEST_CHAT = "guest_chat"
    ATTENDANCE = "attendance"
    ROOM_SERVICE = "room_service"
    BOOKING = "booking"            # service bookings: restaurant, porter, trips
    ROOM_BOOKING = "room_booking"


# Payload keys that identify the entity slice an envelope belongs to, in priority order.
ENTITY_KEYS: dict[Category, tuple[str, ...]] = {
    Category.STAFF_CHAT: ("conversation_id", "conversationId"),
    Category.GUEST_CHAT: ("conversation_id", "conversationId"),
    Category.ATTENDANCE: ("staff_id", "user_id"),
    Category.ROOM_SERVICE: ("order_id", "orderId", "id"),
    Category.BOOKING: ("booking_id", "bookingId", "id"),
    Category.ROOM_BOOKING: ("booking_id", "id"),
}

# Keys for the item inside the entity (message, order line) used by composite dedup keys.
SECONDARY_KEYS = ("message_id", "messageId", "id")


def _first(source: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = source.get(key)
        if value is not None and value != "":
            return value
    return None


class EventMeta(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    event_id: Optional[str] = None
    channel: Optional[str] = None
    event_name: Optional[str] = None
    source: Optional[str] = None
    ts: Optional[str] = None
    scope: dict[str, Any] = Field(default_factory=dict)

    @field_validator("event_id", "ts", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)


class Envelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: Category
    type: str
    payload: dict[str, Any]
    meta: EventMeta = Field(default_factory=EventMeta)

    @property
    def entity_id(self) -> Any:
        """Identifier of the per-entity state slice, or None when unroutable."""
        keys = ENTITY_KEYS[self.category]
        if self.category == Category.ROOM_BOOKING:
            found = _first(self.meta.scope, keys)
            return found if found is not None else _first(self.payload, keys)

        found = _first(self.payload, keys)
        if found is None:
            found = _first(self.meta.scope, keys)
        if found is not None:
            return found

        # Conversation lifecycle events carry the conversation as the payload itself.
        if self.category == Category.GUEST_CHAT and self.type.startswith("conversation_"):
            return self.payload.get("id")
        # Total unread refreshes are scoped to the staff member, not a conversation.
        if self.category == Category.STAFF_CHAT and self.payload.get("is_total_update"):
            return self.payload.get("staff_id") or self.meta.scope.get("staff_id")
        return None

    @property
    def secondary_id(self) -> Any:
        message = self.payload.get("message")
        if isinstance(message, dict) and message.get("id") is not None:
            return message["id"]
        return _first(self.payload, SECONDARY_KEYS)


class PushNotification(BaseModel):
    """Mobile push payload: discriminator in data.type, flat string fields."""

    kind: Literal["push"] = "push"
    data: dict[str, Any]
    notification: Optional[dict[str, Any]] = None


class ChannelDelivery(BaseModel):
    """A pub/sub delivery triple as handed over by a channel's global listener."""

    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["channel"] = "channel"
    channel: Optional[str] = None
    event_name: str = Field(alias="eventName")
    payload: Any = None
    source: str = "pusher"


RawEvent = Union[PushNotification, ChannelDelivery]
