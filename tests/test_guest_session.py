"""Guest chat session: optimistic send, realtime reconcile, resync and pagination."""

import asyncio
import itertools

import httpx
import pytest

from hotelmate_realtime.errors import ApiError, CursorError, SendError
from hotelmate_realtime.guest_chat import DELIVERED, FAILED, GuestChatSession, is_local_id
from hotelmate_realtime.stores.guest_chat import GuestChatStore
from hotelmate_realtime.transport.base import SUBSCRIPTION_ERROR, SUBSCRIPTION_SUCCEEDED, ConnectionState

CHANNEL = "private-hotel-acme-guest-chat-booking-77"


def server_message(msg_id, second, sender="staff", **extra):
    return {
        "id": msg_id,
        "message": f"m{msg_id}",
        "sender_type": sender,
        "timestamp": f"2026-10-19T10:00:{second:02d}Z",
        **extra,
    }


def correlation_ids(*ids):
    it = iter(ids) if ids else (f"c{i}" for i in itertools.count(1))
    return lambda: next(it)


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def store():
    return GuestChatStore()


@pytest.fixture
def session(guest_api, transport, store):
    return GuestChatSession(guest_api, transport, store=store, id_factory=correlation_ids())


@pytest.mark.asyncio
async def test_start_loads_history_and_subscribes(session, guest_api, transport, store):
    guest_api.history = [server_message(2, 2), server_message(1, 1)]
    await session.start()
    assert session.conversation_id == 9
    assert [m["id"] for m in session.messages] == [1, 2]
    assert all(m["status"] == DELIVERED for m in session.messages)
    assert transport.subscribe_calls == [CHANNEL]
    assert [m["id"] for m in store.messages(9)] == [1, 2]
    assert store.state.context["conversation_id"] == 9


@pytest.mark.asyncio
async def test_send_then_realtime_echo_leaves_one_message(session, transport):
    await session.start()
    sent = await session.send("Hello")
    assert sent["status"] == DELIVERED
    assert session.sending == {}

    transport.channels[CHANNEL].emit("realtime_event", {
        "id": 201, "client_message_id": "c1", "message": "Hello", "sender_type": "guest",
        "timestamp": "2026-10-19T10:05:00Z",
    })
    ids = [m["id"] for m in session.messages]
    assert ids == [201]
    assert not any(is_local_id(i) for i in ids)
    assert len([m for m in session.messages if m.get("client_message_id") == "c1"]) == 1


@pytest.mark.asyncio
async def test_echo_before_rest_response(session, guest_api, transport):
    await session.start()

    def echo(cid):
        transport.channels[CHANNEL].emit("realtime_event", {
            "payload": {"message": server_message(300, 30, sender="guest", client_message_id=cid)},
            "meta": {"event_id": "evt-300"},
        })

    guest_api.on_send = echo
    result = await session.send("Hello")
    assert result["id"] == 300
    assert [m["id"] for m in session.messages] == [300]
    assert session.sending == {}


@pytest.mark.asyncio
async def test_failed_send_then_retry_keeps_correlation_id(session, guest_api):
    await session.start()
    guest_api.send_error = ApiError("HTTP 500: boom", status_code=500)
    failed = await session.send("Hello")
    assert failed["status"] == FAILED
    assert [m["client_message_id"] for m in session.failed_messages()] == ["c1"]

    guest_api.send_error = None
    guest_api.send_response = {"message": server_message(310, 31, sender="guest", client_message_id="c1")}
    retried = await session.retry("c1")
    assert retried["id"] == 310
    assert retried["status"] == DELIVERED
    assert [s["client_message_id"] for s in guest_api.sent] == ["c1", "c1"]
    assert session.failed_messages() == []
    assert [m["id"] for m in session.messages] == [310]


@pytest.mark.asyncio
async def test_transport_errors_mark_failed(session, guest_api):
    await session.start()
    guest_api.send_error = httpx.ConnectError("offline")
    assert (await session.send("Hi"))["status"] == FAILED


@pytest.mark.asyncio
async def test_retry_requires_a_failed_message(session):
    await session.start()
    with pytest.raises(SendError):
        await session.retry("unknown")


@pytest.mark.asyncio
async def test_concurrent_sends_are_tracked_independently(session, guest_api):
    await session.start()
    guest_api.send_error = ApiError("HTTP 503", status_code=503)
    await asyncio.gather(session.send("one"), session.send("two"))
    assert sorted(m["client_message_id"] for m in session.failed_messages()) == ["c1", "c2"]
    assert len(session.messages) == 2


@pytest.mark.asyncio
async def test_resync_on_subscription_succeeded_keeps_pending(session, guest_api, transport, store):
    guest_api.history = [server_message(1, 1)]
    await session.start()
    guest_api.send_error = ApiError("HTTP 500", status_code=500)
    await session.send("still trying")

    guest_api.history.append(server_message(2, 2))
    transport.channels[CHANNEL].emit(SUBSCRIPTION_SUCCEEDED, {})
    await settle()

    assert session.connection_state == ConnectionState.CONNECTED
    server_ids = [m["id"] for m in session.messages if not is_local_id(m["id"])]
    assert server_ids == [1, 2]
    assert [m["client_message_id"] for m in session.messages if is_local_id(m["id"])] == ["c1"]
    assert [m["id"] for m in store.messages(9)] == [1, 2]


@pytest.mark.asyncio
async def test_resync_clears_sends_confirmed_while_offline(session, guest_api):
    await session.start()
    guest_api.send_error = ApiError("HTTP 502", status_code=502)
    await session.send("Hello")
    guest_api.history = [server_message(5, 5, sender="guest", client_message_id="c1")]
    await session.sync()
    assert [m["id"] for m in session.messages] == [5]
    assert session.sending == {}


@pytest.mark.asyncio
async def test_subscription_error_marks_failed(session, transport):
    await session.start()
    transport.channels[CHANNEL].emit(SUBSCRIPTION_ERROR, {"status": 403})
    assert session.connection_state == ConnectionState.FAILED


@pytest.mark.asyncio
async def test_realtime_messages_stay_sorted_and_deduplicated(session, transport, store):
    await session.start()
    channel = transport.channels[CHANNEL]
    for msg_id, second in ((3, 30), (1, 10), (2, 20)):
        channel.emit("realtime_event", {"payload": server_message(msg_id, second), "meta": {"event_id": f"e{msg_id}"}})
    channel.emit("realtime_event", {"payload": server_message(1, 10), "meta": {"event_id": "e1"}})
    assert [m["id"] for m in session.messages] == [1, 2, 3]
    assert [m["id"] for m in store.messages(9)] == [1, 2, 3]


@pytest.mark.asyncio
async def test_load_older_uses_oldest_id_as_cursor(guest_api, transport):
    guest_api.history = [server_message(i, i) for i in range(1, 6)]
    session = GuestChatSession(guest_api, transport, page_size=2)
    await session.start()
    assert [m["id"] for m in session.messages] == [4, 5]
    assert await session.load_older() == 2
    assert guest_api.fetches[-1] == 4
    assert [m["id"] for m in session.messages] == [2, 3, 4, 5]


@pytest.mark.asyncio
async def test_load_older_rejects_local_cursor(session, guest_api):
    await session.start()
    guest_api.send_error = ApiError("HTTP 500", status_code=500)
    await session.send("first ever")
    with pytest.raises(CursorError):
        await session.load_older()


@pytest.mark.asyncio
async def test_close_unbinds_and_drops_late_events(session, transport):
    await session.start()
    channel = transport.channels[CHANNEL]
    session.close()
    assert transport.unsubscribe_calls == [CHANNEL]
    assert session.handle_realtime(server_message(9, 9)) is None
    assert channel._bindings == {}
    assert session.connection_state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_disabled_context(guest_api, transport):
    guest_api.context = {"conversation_id": 9, "disabled_reason": "checked_out", "pusher": {}}
    session = GuestChatSession(guest_api, transport)
    await session.start()
    assert session.is_disabled
    assert session.disabled_reason == "checked_out"
    assert transport.subscribe_calls == []
