"""
Service booking store: restaurant, porter and trip bookings (not rooms).

`todays_bookings` indexes the bookings whose `date` (or `time_slot`) falls on
the current day. It is rebuilt on bulk init and re-synced on every update.
Cancelling keeps the booking and marks it cancelled.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

from hotelmate_realtime.models.envelope import Category, Envelope
from hotelmate_realtime.models.state import Action, ServiceBookingState, coerce_id
from hotelmate_realtime.stores.base import DomainStore
from hotelmate_realtime.stores.lifecycle import allows_transition

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"cancelled", "completed"})


class ServiceBookingAction:
    INIT_BOOKINGS_FROM_API = "INIT_BOOKINGS_FROM_API"
    SERVICE_BOOKING_CREATED = "SERVICE_BOOKING_CREATED"
    SERVICE_BOOKING_UPDATED = "SERVICE_BOOKING_UPDATED"
    SERVICE_BOOKING_SEATED = "SERVICE_BOOKING_SEATED"
    SERVICE_BOOKING_TABLE_CHANGED = "SERVICE_BOOKING_TABLE_CHANGED"
    SERVICE_BOOKING_CANCELLED = "SERVICE_BOOKING_CANCELLED"
    SERVICE_BOOKING_REOPENED = "SERVICE_BOOKING_REOPENED"


def booking_date(booking: dict[str, Any]) -> Optional[date]:
    value = booking.get("date") or booking.get("time_slot")
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def is_todays_booking(booking: dict[str, Any], today: date) -> bool:
    return booking_date(booking) == today


def _sync_today(todays: list[Any], booking_id: Any, is_today: bool) -> list[Any]:
    listed = booking_id in todays
    if is_today and not listed:
        return todays + [booking_id]
    if not is_today and listed:
        return [i for i in todays if i != booking_id]
    return todays


class ServiceBookingStore(DomainStore[ServiceBookingState]):
    category = Category.BOOKING
    state_class = ServiceBookingState

    def __init__(self, today: Callable[[], date] = date.today, **kwargs: Any):
        self._today = today
        super().__init__(**kwargs)

    def reducers(self):
        A = ServiceBookingAction
        return {
            A.INIT_BOOKINGS_FROM_API: self._init_bookings,
            A.SERVICE_BOOKING_CREATED: self._created,
            A.SERVICE_BOOKING_UPDATED: self._updated,
            A.SERVICE_BOOKING_SEATED: self._updated,
            A.SERVICE_BOOKING_TABLE_CHANGED: self._updated,
            A.SERVICE_BOOKING_CANCELLED: self._cancelled,
            A.SERVICE_BOOKING_REOPENED: self._reopened,
        }

    def event_handlers(self):
        A = ServiceBookingAction
        created = self._forward(A.SERVICE_BOOKING_CREATED)
        updated = self._forward(A.SERVICE_BOOKING_UPDATED)
        seated = self._forward(A.SERVICE_BOOKING_SEATED)
        table_changed = self._forward(A.SERVICE_BOOKING_TABLE_CHANGED)
        return {
            "booking_created": created,
            "new_booking": created,
            "new_dinner_booking": created,
            "booking_updated": updated,
            "booking_confirmed": updated,
            "booking_seated": seated,
            "table_assigned": seated,
            "table_changed": table_changed,
            "booking_table_changed": table_changed,
            "booking_cancelled": self._forward(A.SERVICE_BOOKING_CANCELLED),
            "booking_reopened": self._forward(A.SERVICE_BOOKING_REOPENED),
        }

    # -- reducers ---------------------------------------------------------------

    def _init_bookings(self, state: ServiceBookingState, payload: dict[str, Any]) -> ServiceBookingState:
        today = self._today()
        bookings_by_id = dict(state.bookings_by_id)
        todays: list[Any] = []
        for booking in payload.get("bookings") or []:
            if not booking or booking.get("id") is None:
                continue
            booking_id = coerce_id(booking["id"])
            bookings_by_id[booking_id] = booking
            if is_todays_booking(booking, today):
                todays.append(booking_id)
        return state.model_copy(update={"bookings_by_id": bookings_by_id, "todays_bookings": todays})

    def _created(self, state: ServiceBookingState, payload: dict[str, Any]) -> ServiceBookingState:
        booking = payload.get("booking") or {}
        booking_id = coerce_id(booking.get("id"))
        if booking_id is None:
            logger.warning("[booking] SERVICE_BOOKING_CREATED without booking id: %s", booking)
            return state
        if booking_id in state.bookings_by_id:
            return self._updated(state, {"booking": booking, "booking_id": booking_id})
        return state.model_copy(update={
            "bookings_by_id": {**state.bookings_by_id, booking_id: booking},
            "todays_bookings": _sync_today(
                state.todays_bookings, booking_id, is_todays_booking(booking, self._today()),
            ),
        })

    def _apply_update(self, state: ServiceBookingState, payload: dict[str, Any], reopen: bool) -> ServiceBookingState:
        booking = payload.get("booking") or {}
        booking_id = coerce_id(booking.get("id") or payload.get("booking_id"))
        existing = state.bookings_by_id.get(booking_id)
        if booking_id is None or existing is None:
            logger.warning("[booking] Update for unknown booking %s", booking_id)
            return state
        if not allows_transition(self.name, booking_id, existing, booking, TERMINAL_STATUSES, reopen):
            return state
        updated = {**existing, **booking}
        return state.model_copy(update={
            "bookings_by_id": {**state.bookings_by_id, booking_id: updated},
            "todays_bookings": _sync_today(
                state.todays_bookings, booking_id, is_todays_booking(updated, self._today()),
            ),
        })

    def _updated(self, state: ServiceBookingState, payload: dict[str, Any]) -> ServiceBookingState:
        return self._apply_update(state, payload, reopen=False)

    def _reopened(self, state: ServiceBookingState, payload: dict[str, Any]) -> ServiceBookingState:
        return self._apply_update(state, payload, reopen=True)

    def _cancelled(self, state: ServiceBookingState, payload: dict[str, Any]) -> ServiceBookingState:
        booking_id = coerce_id(payload.get("booking_id"))
        existing = state.bookings_by_id.get(booking_id)
        if existing is None:
            logger.warning("[booking] Cancel for unknown booking %s", booking_id)
            return state
        cancelled = {
            **existing,
            "status": "cancelled",
            "cancelled_at": existing.get("cancelled_at") or datetime.now(timezone.utc).isoformat(),
        }
        return state.model_copy(update={"bookings_by_id": {**state.bookings_by_id, booking_id: cancelled}})

    # -- realtime events --------------------------------------------------------

    def _forward(self, action_type: str):
        def handler(envelope: Envelope, booking_id: Any) -> None:
            booking = {**envelope.payload, "id": booking_id}
            self.dispatch(Action(action_type, {"booking": booking, "booking_id": booking_id}))
        return handler

    def init_from_api(self, bookings: list[dict[str, Any]]) -> None:
        self.dispatch(Action(ServiceBookingAction.INIT_BOOKINGS_FROM_API, {"bookings": bookings}))

    def todays_bookings(self) -> list[dict[str, Any]]:
        state = self.state
        return [state.bookings_by_id[i] for i in state.todays_bookings if i in state.bookings_by_id]
