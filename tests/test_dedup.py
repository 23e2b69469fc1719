import asyncio

import pytest

from hotelmate_realtime.dedup import (
    EventDeduplicator,
    EventLedger,
    TimeWindowLedger,
    WindowedDeduplicator,
    composite_key,
    payload_fingerprint,
)
from hotelmate_realtime.models.envelope import Category
from hotelmate_realtime.stores.guest_chat import GuestChatStore


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestEventLedger:
    def test_add_reports_duplicates(self):
        ledger = EventLedger(capacity=10)
        assert ledger.add("a") is True
        assert ledger.add("a") is False
        assert "a" in ledger

    def test_evicts_oldest_first(self):
        ledger = EventLedger(capacity=2)
        ledger.add("a")
        ledger.add("b")
        ledger.add("c")
        assert len(ledger) == 2
        assert "a" not in ledger
        assert ledger.add("a") is True

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            EventLedger(capacity=0)


class TestTimeWindowLedger:
    def test_suppresses_inside_window(self):
        clock = FakeClock()
        ledger = TimeWindowLedger(window_s=5.0, clock=clock)
        assert ledger.add("k") is True
        clock.now = 2.0
        assert ledger.add("k") is False
        assert "k" in ledger
        clock.now = 6.0
        assert "k" not in ledger
        assert ledger.add("k") is True

    @pytest.mark.asyncio
    async def test_entries_expire_on_the_loop(self):
        ledger = TimeWindowLedger(window_s=0.01)
        ledger.add("k")
        assert len(ledger) == 1
        await asyncio.sleep(0.05)
        assert len(ledger) == 0

    def test_clear_drops_everything(self):
        ledger = TimeWindowLedger(window_s=5.0, clock=FakeClock())
        ledger.add("k")
        ledger.clear()
        assert ledger.add("k") is True


class TestKeys:
    def test_event_id_wins(self, envelope):
        env = envelope(Category.STAFF_CHAT, "message_created", {"conversation_id": 3, "id": 10}, event_id="ev9")
        assert EventDeduplicator().key_for(Category.STAFF_CHAT, env) == "ev9"

    def test_composite_key_uses_message_id(self, envelope):
        env = envelope(Category.STAFF_CHAT, "message_created", {"conversation_id": 3, "message": {"id": 10}})
        assert composite_key(Category.STAFF_CHAT, env, env.entity_id) == (
            f"staff_chat:message_created:3:10:{payload_fingerprint(env.payload)}"
        )

    def test_entity_own_id_is_not_a_discriminator(self, envelope):
        env = envelope(Category.ROOM_SERVICE, "order_updated", {"id": 5, "status": "ready"})
        assert composite_key(Category.ROOM_SERVICE, env, env.entity_id) is None

    def test_falls_back_to_timestamp(self, envelope):
        env = envelope(Category.ROOM_SERVICE, "order_updated", {"id": 5}, ts="2026-10-19T10:00:00Z")
        assert composite_key(Category.ROOM_SERVICE, env, 5) == (
            f"room_service:order_updated:5:2026-10-19T10:00:00Z:{payload_fingerprint(env.payload)}"
        )

    def test_fingerprint_ignores_key_order(self):
        assert payload_fingerprint({"a": 1, "b": [2]}) == payload_fingerprint({"b": [2], "a": 1})
        assert payload_fingerprint({"a": 1}) != payload_fingerprint({"a": 2})

    def test_same_message_different_event_gets_new_key(self, envelope):
        first = envelope(Category.STAFF_CHAT, "read_receipt", {"conversation_id": 3, "message_id": 1, "staff_id": 5})
        second = envelope(Category.STAFF_CHAT, "read_receipt", {"conversation_id": 3, "message_id": 1, "staff_id": 6})
        assert composite_key(Category.STAFF_CHAT, first, 3) != composite_key(Category.STAFF_CHAT, second, 3)


class TestDeduplicators:
    def test_event_id_processed_once(self, envelope):
        dedup = EventDeduplicator()
        env = envelope(Category.GUEST_CHAT, "guest_message_created", {"id": 55, "conversation_id": 9}, event_id="ev1")
        assert dedup.should_process(Category.GUEST_CHAT, env) is True
        assert dedup.should_process(Category.GUEST_CHAT, env) is False

    def test_no_discriminator_is_never_suppressed(self, envelope):
        dedup = EventDeduplicator()
        env = envelope(Category.ROOM_SERVICE, "order_updated", {"id": 5, "status": "ready"})
        assert dedup.should_process(Category.ROOM_SERVICE, env) is True
        assert dedup.should_process(Category.ROOM_SERVICE, env) is True

    def test_composite_key_only_suppresses_inside_window(self, envelope):
        clock = FakeClock()
        dedup = EventDeduplicator(window_s=3.0, clock=clock)
        env = envelope(Category.STAFF_CHAT, "message_edited", {"conversation_id": 3, "message": {"id": 1}})
        assert dedup.should_process(Category.STAFF_CHAT, env) is True
        clock.now = 1.0
        assert dedup.should_process(Category.STAFF_CHAT, env) is False
        clock.now = 4.5
        assert dedup.should_process(Category.STAFF_CHAT, env) is True

    def test_event_ids_outlive_the_window(self, envelope):
        clock = FakeClock()
        dedup = EventDeduplicator(window_s=3.0, clock=clock)
        env = envelope(Category.GUEST_CHAT, "guest_message_created", {"id": 55, "conversation_id": 9}, event_id="ev1")
        dedup.should_process(Category.GUEST_CHAT, env)
        clock.now = 60.0
        assert dedup.should_process(Category.GUEST_CHAT, env) is False

    def test_ledgers_are_private_per_instance(self, envelope):
        env = envelope(Category.GUEST_CHAT, "message_created", {"id": 1, "conversation_id": 9}, event_id="shared")
        assert EventDeduplicator().should_process(Category.GUEST_CHAT, env)
        assert EventDeduplicator().should_process(Category.GUEST_CHAT, env)

    def test_windowed_key_is_type_and_staff(self, envelope):
        clock = FakeClock()
        dedup = WindowedDeduplicator(window_s=5.0, clock=clock)
        env = envelope(Category.ATTENDANCE, "clock_status_updated", {"staff_id": 42})
        assert dedup.key_for(Category.ATTENDANCE, env) == "attendance:clock_status_updated:42"
        assert dedup.should_process(Category.ATTENDANCE, env) is True
        clock.now = 1.0
        assert dedup.should_process(Category.ATTENDANCE, env) is False
        other = envelope(Category.ATTENDANCE, "clock_status_updated", {"staff_id": 43})
        assert dedup.should_process(Category.ATTENDANCE, other) is True


def test_feeding_the_same_event_twice_leaves_state_unchanged(envelope):
    store = GuestChatStore()
    store.init_conversations([{"id": 9}])
    env = envelope(Category.GUEST_CHAT, "guest_message_created",
                   {"id": 55, "conversation_id": 9, "body": "Hi"}, event_id="ev1")
    store.handle_event(env)
    once = store.state
    assert store.handle_event(env) is False
    assert store.state is once
    assert [m["id"] for m in store.messages(9)] == [55]
