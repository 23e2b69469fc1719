"""
Notification feed fed by the router's side-channel.

Only user-facing categories are promoted; attendance events only when they
carry an approval or rejection. The feed is newest first and bounded.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from hotelmate_realtime.models.envelope import Category, Envelope
from hotelmate_realtime.models.state import Action, NotificationState

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 200

TITLES = {
    Category.ATTENDANCE: "Attendance Update",
    Category.STAFF_CHAT: "Staff Chat",
    Category.GUEST_CHAT: "Guest Chat",
    Category.ROOM_SERVICE: "Room Service",
    Category.BOOKING: "Booking Update",
}


class NotificationAction:
    ADD_NOTIFICATION = "ADD_NOTIFICATION"
    MARK_READ = "MARK_READ"
    MARK_ALL_READ = "MARK_ALL_READ"


def _humanize(event_type: str) -> str:
    return event_type.replace("_", " ").replace("-", " ")


def should_notify(envelope: Envelope) -> bool:
    if envelope.category not in TITLES:
        return False
    if envelope.category == Category.ATTENDANCE:
        return "approved" in envelope.type or "rejected" in envelope.type
    return True


def notification_message(category: Category, event_type: str) -> str:
    if category == Category.ATTENDANCE:
        return f"Staff {_humanize(event_type)}"
    if category == Category.STAFF_CHAT:
        return "New message received" if event_type == "message_created" else f"Message {_humanize(event_type)}"
    if category == Category.GUEST_CHAT:
        if event_type == "guest_message_created":
            return "New guest message"
        return f"Guest chat {_humanize(event_type)}"
    if category == Category.ROOM_SERVICE:
        return f"Order {_humanize(event_type)}"
    if category == Category.BOOKING:
        return f"Booking {_humanize(event_type)}"
    return _humanize(event_type)


class NotificationFeed:
    def __init__(self, limit: int = DEFAULT_LIMIT):
        self._limit = limit
        self._state = NotificationState()
        self._listeners: list[Callable[[NotificationState], None]] = []
        self._mounted = True

    @property
    def state(self) -> NotificationState:
        return self._state

    @property
    def items(self) -> list[dict[str, Any]]:
        return self._state.items

    @property
    def unread_count(self) -> int:
        return self._state.unread_count

    def reduce(self, state: NotificationState, action: Action) -> NotificationState:
        if action.type == NotificationAction.ADD_NOTIFICATION:
            item = {
                "id": uuid.uuid4().hex,
                **action.payload,
                "read": False,
                "created_at": datetime.now(timezone.utc).isoformat(),
            }
            return state.model_copy(update={"items": [item] + state.items[: self._limit - 1]})
        if action.type == NotificationAction.MARK_READ:
            target = action.payload.get("id")
            if not any(item["id"] == target for item in state.items):
                return state
            return state.model_copy(update={
                "items": [{**item, "read": True} if item["id"] == target else item for item in state.items],
            })
        if action.type == NotificationAction.MARK_ALL_READ:
            if all(item.get("read") for item in state.items):
                return state
            return state.model_copy(update={"items": [{**item, "read": True} for item in state.items]})
        logger.warning("[notifications] Unknown action type: %s", action.type)
        return state

    def dispatch(self, action: Action) -> None:
        if not self._mounted:
            return
        new_state = self.reduce(self._state, action)
        if new_state is self._state:
            return
        self._state = new_state
        for listener in list(self._listeners):
            listener(new_state)

    def subscribe(self, listener: Callable[[NotificationState], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def add(self, notification: dict[str, Any]) -> None:
        self.dispatch(Action(NotificationAction.ADD_NOTIFICATION, notification))

    def maybe_add(self, envelope: Envelope) -> Optional[dict[str, Any]]:
        """Promote a routed envelope into the feed. Returns the new item, if any."""
        if not should_notify(envelope):
            return None
        self.add({
            "category": envelope.category.value,
            "title": TITLES[envelope.category],
            "message": notification_message(envelope.category, envelope.type),
            "level": "info",
            "event_type": envelope.type,
            "source": envelope.meta.source or "pusher",
            "timestamp": envelope.meta.ts,
            "data": dict(envelope.payload),
        })
        return self._state.items[0] if self._mounted else None

    def mark_read(self, notification_id: str) -> None:
        self.dispatch(Action(NotificationAction.MARK_READ, {"id": notification_id}))

    def mark_all_read(self) -> None:
        self.dispatch(Action(NotificationAction.MARK_ALL_READ))

    def close(self) -> None:
        self._mounted = False
        self._listeners.clear()
        self._state = NotificationState()
