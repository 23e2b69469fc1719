"""
Room booking store — guest accommodation bookings for staff views.

Every touching event upserts the booking and moves it to the front of
`display_order`. Healing events are informational: the corrected data
replays through the normal created/updated events, so they never touch state.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from hotelmate_realtime.models.envelope import Category, Envelope
from hotelmate_realtime.models.state import Action, RoomBookingState, coerce_id
from hotelmate_realtime.stores.base import DomainStore
from hotelmate_realtime.stores.lifecycle import allows_transition

logger = logging.getLogger(__name__)

NON_OPERATIONAL_STATUSES = frozenset({"DRAFT", "PENDING_PAYMENT", "CANCELLED_DRAFT"})
TERMINAL_STATUSES = frozenset({"cancelled", "checked_out", "completed"})
HEALING_EVENTS = frozenset({"integrity_healed", "party_healed", "guests_healed"})


class RoomBookingAction:
    ROOM_BOOKING_CREATED = "ROOM_BOOKING_CREATED"
    ROOM_BOOKING_UPDATED = "ROOM_BOOKING_UPDATED"
    ROOM_BOOKING_PARTY_UPDATED = "ROOM_BOOKING_PARTY_UPDATED"
    ROOM_BOOKING_CANCELLED = "ROOM_BOOKING_CANCELLED"
    ROOM_BOOKING_CHECKED_IN = "ROOM_BOOKING_CHECKED_IN"
    ROOM_BOOKING_CHECKED_OUT = "ROOM_BOOKING_CHECKED_OUT"
    ROOM_BOOKING_REOPENED = "ROOM_BOOKING_REOPENED"
    INIT_BOOKINGS_FROM_API = "INIT_BOOKINGS_FROM_API"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_non_operational(booking: dict[str, Any]) -> bool:
    status = booking.get("status")
    return isinstance(status, str) and status.upper() in NON_OPERATIONAL_STATUSES


def move_to_front(order: list[Any], booking_id: Any) -> list[Any]:
    return [booking_id] + [i for i in order if i != booking_id]


class RoomBookingStore(DomainStore[RoomBookingState]):
    category = Category.ROOM_BOOKING
    state_class = RoomBookingState

    def reducers(self):
        A = RoomBookingAction
        upsert = self._upsert
        return {
            A.INIT_BOOKINGS_FROM_API: self._init_bookings,
            A.ROOM_BOOKING_CREATED: upsert,
            A.ROOM_BOOKING_UPDATED: upsert,
            A.ROOM_BOOKING_PARTY_UPDATED: upsert,
            A.ROOM_BOOKING_CANCELLED: upsert,
            A.ROOM_BOOKING_CHECKED_IN: upsert,
            A.ROOM_BOOKING_CHECKED_OUT: upsert,
            A.ROOM_BOOKING_REOPENED: self._reopen,
        }

    def event_handlers(self):
        A = RoomBookingAction
        handlers = {
            "booking_created": self._forward(A.ROOM_BOOKING_CREATED),
            "booking_updated": self._forward(A.ROOM_BOOKING_UPDATED),
            "booking_party_updated": self._forward(A.ROOM_BOOKING_PARTY_UPDATED),
            "booking_cancelled": self._forward(A.ROOM_BOOKING_CANCELLED, default_status="CANCELLED"),
            "booking_checked_in": self._forward(A.ROOM_BOOKING_CHECKED_IN, default_status="CHECKED_IN"),
            "booking_checked_out": self._forward(A.ROOM_BOOKING_CHECKED_OUT, default_status="CHECKED_OUT"),
            "booking_payment_required": self._forward(
                A.ROOM_BOOKING_UPDATED, status="PAYMENT_REQUIRED", stamp="payment_required_at",
            ),
            "booking_confirmed": self._forward(A.ROOM_BOOKING_UPDATED, status="CONFIRMED", stamp="confirmed_at"),
            "booking_reopened": self._forward(A.ROOM_BOOKING_REOPENED),
        }
        for name in HEALING_EVENTS:
            handlers[name] = self._on_healing
        return handlers

    # -- reducers ---------------------------------------------------------------

    def _init_bookings(self, state: RoomBookingState, payload: dict[str, Any]) -> RoomBookingState:
        by_id = dict(state.by_booking_id)
        order = list(state.display_order)
        for booking in payload.get("bookings") or []:
            booking_id = coerce_id(booking.get("booking_id") or booking.get("id"))
            if booking_id is None or is_non_operational(booking):
                continue
            by_id[booking_id] = {**by_id.get(booking_id, {}), **booking}
            if booking_id not in order:
                order.append(booking_id)
        return state.model_copy(update={"by_booking_id": by_id, "display_order": order})

    def _remove(self, state: RoomBookingState, booking_id: Any) -> RoomBookingState:
        if booking_id not in state.by_booking_id:
            return state
        return state.model_copy(update={
            "by_booking_id": {k: v for k, v in state.by_booking_id.items() if k != booking_id},
            "display_order": [i for i in state.display_order if i != booking_id],
        })

    def _apply(self, state: RoomBookingState, payload: dict[str, Any], reopen: bool) -> RoomBookingState:
        booking_id = coerce_id(payload.get("booking_id"))
        booking = payload.get("booking") or {}
        if booking_id is None:
            logger.warning("[room_booking] Action without booking id")
            return state
        if is_non_operational(booking):
            logger.debug("[room_booking] Ignoring non-operational booking %s (%s)", booking_id, booking.get("status"))
            return self._remove(state, booking_id)

        existing = state.by_booking_id.get(booking_id)
        if not allows_transition(self.name, booking_id, existing, booking, TERMINAL_STATUSES, reopen):
            return state
        return state.model_copy(update={
            "by_booking_id": {**state.by_booking_id, booking_id: {**(existing or {}), **booking}},
            "display_order": move_to_front(state.display_order, booking_id),
        })

    def _upsert(self, state: RoomBookingState, payload: dict[str, Any]) -> RoomBookingState:
        return self._apply(state, payload, reopen=False)

    def _reopen(self, state: RoomBookingState, payload: dict[str, Any]) -> RoomBookingState:
        return self._apply(state, payload, reopen=True)

    # -- realtime events --------------------------------------------------------

    def _forward(
        self,
        action_type: str,
        status: Optional[str] = None,
        default_status: Optional[str] = None,
        stamp: Optional[str] = None,
    ):
        def handler(envelope: Envelope, booking_id: Any) -> None:
            booking = dict(envelope.payload)
            if status:
                booking["status"] = status
            elif default_status and not booking.get("status"):
                booking["status"] = default_status
            if stamp and not booking.get(stamp):
                booking[stamp] = envelope.meta.ts or _now()
            self.dispatch(Action(action_type, {"booking": booking, "booking_id": booking_id}))
        return handler

    def _on_healing(self, envelope: Envelope, booking_id: Any) -> None:
        logger.debug("[room_booking] Healing event ignored: %s for %s", envelope.type, booking_id)

    def init_from_api(self, bookings: list[dict[str, Any]]) -> None:
        self.dispatch(Action(RoomBookingAction.INIT_BOOKINGS_FROM_API, {"bookings": bookings}))

    def bookings(self) -> list[dict[str, Any]]:
        """Bookings in display order, newest first."""
        state = self.state
        return [state.by_booking_id[i] for i in state.display_order if i in state.by_booking_id]
