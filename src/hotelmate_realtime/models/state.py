"""
Per-domain store state and the Action record reducers consume.

State objects are replaced, never mutated: reducers build a new instance
with model_copy(update=...). Entity snapshots are the backend's dicts.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def coerce_id(value: Any) -> Any:
    """Push payloads carry ids as strings; store keys are ints when numeric."""
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return value


class Action:
    __slots__ = ("type", "payload")

    def __init__(self, type: str, payload: Optional[dict[str, Any]] = None):
        self.type = type
        self.payload = payload or {}

    def __repr__(self) -> str:
        return f"Action(type={self.type!r})"


class _State(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


class StaffChatState(_State):
    conversations_by_id: dict[Any, dict[str, Any]] = Field(default_factory=dict)
    messages_by_conversation_id: dict[Any, list[dict[str, Any]]] = Field(default_factory=dict)
    active_conversation_id: Optional[Any] = None
    total_unread: int = 0


class GuestChatState(_State):
    conversations_by_id: dict[Any, dict[str, Any]] = Field(default_factory=dict)
    messages_by_conversation_id: dict[Any, list[dict[str, Any]]] = Field(default_factory=dict)
    active_conversation_id: Optional[Any] = None
    context: Optional[dict[str, Any]] = None


class AttendanceState(_State):
    staff_by_id: dict[Any, dict[str, Any]] = Field(default_factory=dict)
    current_user_status: Optional[dict[str, Any]] = None
    by_department: dict[str, dict[str, int]] = Field(default_factory=dict)


class RoomServiceState(_State):
    orders_by_id: dict[Any, dict[str, Any]] = Field(default_factory=dict)
    pending_orders: list[Any] = Field(default_factory=list)
    active_order_id: Optional[Any] = None


class RoomBookingState(_State):
    by_booking_id: dict[Any, dict[str, Any]] = Field(default_factory=dict)
    display_order: list[Any] = Field(default_factory=list)  # newest first


class ServiceBookingState(_State):
    bookings_by_id: dict[Any, dict[str, Any]] = Field(default_factory=dict)
    todays_bookings: list[Any] = Field(default_factory=list)


class NotificationState(_State):
    items: list[dict[str, Any]] = Field(default_factory=list)  # newest first

    @property
    def unread_count(self) -> int:
        return sum(1 for item in self.items if not item.get("read"))
