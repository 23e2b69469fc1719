import pytest

from hotelmate_realtime.models.envelope import Category
from hotelmate_realtime.stores.room_booking import RoomBookingStore


@pytest.fixture
def store():
    s = RoomBookingStore()
    s.init_from_api([
        {"booking_id": "BK-1", "status": "CONFIRMED"},
        {"booking_id": "BK-2", "status": "CONFIRMED"},
        {"booking_id": "BK-3", "status": "PENDING_PAYMENT"},
    ])
    return s


def test_init_skips_non_operational(store):
    assert store.state.display_order == ["BK-1", "BK-2"]


def test_touch_moves_to_front(store, envelope):
    store.handle_event(envelope(Category.ROOM_BOOKING, "booking_updated",
                                {"booking_id": "BK-2", "status": "CONFIRMED", "guest": "Doe"}))
    assert store.state.display_order == ["BK-2", "BK-1"]
    assert store.bookings()[0]["guest"] == "Doe"


def test_new_booking_goes_first(store, envelope):
    store.handle_event(envelope(Category.ROOM_BOOKING, "booking_created", {"booking_id": "BK-9", "status": "CONFIRMED"}))
    assert store.state.display_order[0] == "BK-9"


def test_healing_events_never_touch_state(store, envelope):
    before = store.state
    assert store.handle_event(envelope(Category.ROOM_BOOKING, "integrity_healed", {"booking_id": "BK-1"}))
    assert store.handle_event(envelope(Category.ROOM_BOOKING, "party_healed", {"booking_id": "BK-2"}))
    assert store.state is before


def test_non_operational_update_removes(store, envelope):
    store.handle_event(envelope(Category.ROOM_BOOKING, "booking_updated", {"booking_id": "BK-1", "status": "DRAFT"}))
    assert "BK-1" not in store.state.by_booking_id
    assert store.state.display_order == ["BK-2"]


def test_cancel_is_terminal_until_reopened(store, envelope):
    store.handle_event(envelope(Category.ROOM_BOOKING, "booking_cancelled", {"booking_id": "BK-1"}))
    assert store.state.by_booking_id["BK-1"]["status"] == "CANCELLED"

    cancelled = store.state
    store.handle_event(envelope(Category.ROOM_BOOKING, "booking_updated", {"booking_id": "BK-1", "status": "CONFIRMED"}))
    assert store.state is cancelled

    store.handle_event(envelope(Category.ROOM_BOOKING, "booking_reopened", {"booking_id": "BK-1", "status": "CONFIRMED"}))
    assert store.state.by_booking_id["BK-1"]["status"] == "CONFIRMED"


def test_payment_required_stamps_status(store, envelope):
    store.handle_event(envelope(Category.ROOM_BOOKING, "booking_payment_required",
                                {"booking_id": "BK-2"}, ts="2026-10-19T09:00:00Z"))
    booking = store.state.by_booking_id["BK-2"]
    assert booking["status"] == "PAYMENT_REQUIRED"
    assert booking["payment_required_at"] == "2026-10-19T09:00:00Z"


def test_check_in_keeps_explicit_status(store, envelope):
    store.handle_event(envelope(Category.ROOM_BOOKING, "booking_checked_in", {"booking_id": "BK-2"}))
    assert store.state.by_booking_id["BK-2"]["status"] == "CHECKED_IN"
    store.handle_event(envelope(Category.ROOM_BOOKING, "booking_checked_out",
                                {"booking_id": "BK-2", "status": "COMPLETED"}))
    assert store.state.by_booking_id["BK-2"]["status"] == "COMPLETED"


def test_scope_booking_id_wins(store, envelope):
    env = envelope(Category.ROOM_BOOKING, "booking_updated", {"id": 77, "status": "CONFIRMED"},
                   scope={"booking_id": "BK-1"})
    assert env.entity_id == "BK-1"
    store.handle_event(env)
    assert store.state.by_booking_id["BK-1"]["id"] == 77
    assert 77 not in store.state.by_booking_id
