"""
Guest chat session — optimistic send, realtime reconcile and resync for one guest.

Outbound message states:
    sending -> delivered        REST accepted (or the realtime echo arrived)
    sending -> failed           REST rejected; retry() re-enters at sending with
                                the same client_message_id and attempt + 1

The authoritative list and the optimistic entries share one list kept sorted
by (timestamp, id). Pending sends are additionally tracked by correlation id
in `sending` until confirmed. Every `pusher:subscription_succeeded` (first
connect and every reconnect) triggers a resync of the latest page.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx

from hotelmate_realtime.api import GuestChatAPI
from hotelmate_realtime.dedup import EventLedger
from hotelmate_realtime.errors import ApiError, CursorError, SendError
from hotelmate_realtime.models.envelope import Category, Envelope, EventMeta
from hotelmate_realtime.stores.guest_chat import GuestChatStore
from hotelmate_realtime.stores.ordering import find_message, merge_by_id, sort_messages, upsert_message
from hotelmate_realtime.transport.base import (
    SUBSCRIPTION_ERROR,
    SUBSCRIPTION_SUCCEEDED,
    Channel,
    ConnectionState,
    Transport,
)

logger = logging.getLogger(__name__)

LOCAL_PREFIXES = ("local:", "sending-")

SENDING = "sending"
DELIVERED = "delivered"
FAILED = "failed"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_local_id(message_id: Any) -> bool:
    return isinstance(message_id, str) and message_id.startswith(LOCAL_PREFIXES)


def optimistic_message(
    text: str,
    client_message_id: str,
    reply_to: Optional[Any] = None,
    attempt: int = 1,
    timestamp: Optional[str] = None,
) -> dict[str, Any]:
    stamp = timestamp or _now()
    return {
        "id": f"local:{client_message_id}",
        "client_message_id": client_message_id,
        "message": text,
        "sender_type": "guest",
        "status": SENDING,
        "timestamp": stamp,
        "created_at": stamp,
        "reply_to": reply_to,
        "attempt": attempt,
        "optimistic": True,
    }


def _extract_message(payload: Any) -> Optional[dict[str, Any]]:
    """Find the message record in a wrapped envelope, a {message: …} body or a bare message."""
    if not isinstance(payload, dict):
        return None
    body = payload.get("payload") if isinstance(payload.get("payload"), dict) else payload
    message = body.get("message")
    if isinstance(message, dict):
        return message
    if body.get("id") is not None and ("message" in body or "body" in body):
        return body
    return None


class GuestChatSession:
    def __init__(
        self,
        api: GuestChatAPI,
        transport: Transport,
        store: Optional[GuestChatStore] = None,
        page_size: int = 50,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self._api = api
        self._transport = transport
        self._store = store
        self._page_size = page_size
        self._id_factory = id_factory

        self.context: Optional[dict[str, Any]] = None
        self.messages: list[dict[str, Any]] = []
        self.sending: dict[str, dict[str, Any]] = {}
        self.connection_state = ConnectionState.INITIALIZED

        self._seen_events = EventLedger()
        self._channel: Optional[Channel] = None
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    # -- state ----------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def conversation_id(self) -> Any:
        return (self.context or {}).get("conversation_id")

    @property
    def is_disabled(self) -> bool:
        return bool((self.context or {}).get("disabled_reason"))

    @property
    def disabled_reason(self) -> Optional[str]:
        return (self.context or {}).get("disabled_reason")

    def failed_messages(self) -> list[dict[str, Any]]:
        return [m for m in self.sending.values() if m["status"] == FAILED]

    def _set_messages(self, messages: list[dict[str, Any]]) -> None:
        self.messages = sort_messages(messages)

    def _authoritative(self) -> list[dict[str, Any]]:
        return [m for m in self.messages if not m.get("optimistic")]

    def _mirror_all(self) -> None:
        if self._store is not None and self.conversation_id is not None:
            self._store.init_messages(self.conversation_id, self._authoritative())

    # -- lifecycle --------------------------------------------------------------

    async def start(self) -> None:
        """Fetch context, then the latest page, then subscribe to the realtime channel."""
        self.context = await self._api.get_context()
        if self._closed:
            return
        if self._store is not None:
            self._store.set_context(self.context)

        latest = await self._api.get_messages(limit=self._page_size)
        if self._closed:
            return
        self._set_messages(merge_by_id([{**m, "status": DELIVERED} for m in latest]))
        self._mirror_all()

        pusher = self.context.get("pusher") or {}
        channel_name = pusher.get("channel")
        if not channel_name:
            logger.warning("Guest chat context has no realtime channel, staying offline")
            return
        self._subscribe(channel_name, pusher.get("event") or "realtime_event")

    def _subscribe(self, channel_name: str, event_name: str) -> None:
        self.connection_state = ConnectionState.CONNECTING
        try:
            channel = self._transport.subscribe(channel_name)
        except Exception as e:
            logger.error("Guest chat subscription to %s failed: %s", channel_name, e)
            self.connection_state = ConnectionState.FAILED
            return
        channel.bind(SUBSCRIPTION_SUCCEEDED, self._on_subscribed)
        channel.bind(SUBSCRIPTION_ERROR, self._on_subscription_error)
        channel.bind(event_name, self.handle_realtime)
        self._channel = channel

    def _on_subscribed(self, _data: Any = None) -> None:
        self.connection_state = ConnectionState.CONNECTED
        logger.debug("Guest chat subscribed, resyncing")
        self._spawn(self.sync())

    def _on_subscription_error(self, error: Any = None) -> None:
        logger.error("Guest chat subscription error: %s", error)
        self.connection_state = ConnectionState.FAILED

    def _spawn(self, coro: Any) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            logger.debug("No running loop, resync skipped")
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def close(self) -> None:
        """Unbind the channel and abandon in-flight resyncs. Late REST results are dropped."""
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        if self._channel is not None:
            self._channel.unbind_all()
            try:
                self._transport.unsubscribe(self._channel.name)
            except Exception as e:
                logger.error("Error unsubscribing from %s: %s", self._channel.name, e)
            self._channel = None
        self.connection_state = ConnectionState.DISCONNECTED

    # -- send path --------------------------------------------------------------

    async def send(self, text: str, reply_to: Optional[Any] = None) -> dict[str, Any]:
        """Send a message optimistically. Returns the entry as it stands once the REST call settles."""
        return await self._send(text, self._id_factory(), reply_to, attempt=1)

    async def retry(self, client_message_id: str) -> dict[str, Any]:
        failed = self.sending.get(client_message_id)
        if failed is None or failed["status"] != FAILED:
            raise SendError("Only failed messages can be retried", client_message_id)
        self._drop_optimistic(client_message_id)
        return await self._send(failed["message"], client_message_id, failed.get("reply_to"), failed["attempt"] + 1)

    async def _send(self, text: str, client_message_id: str, reply_to: Any, attempt: int) -> dict[str, Any]:
        entry = optimistic_message(text, client_message_id, reply_to, attempt)
        self.sending[client_message_id] = entry
        self._set_messages(self.messages + [entry])

        try:
            response = await self._api.send_message(text, client_message_id, reply_to)
        except (ApiError, httpx.HTTPError) as e:
            if self._closed:
                return entry
            logger.error("Guest message %s failed (attempt %d): %s", client_message_id, attempt, e)
            return self._mark(client_message_id, FAILED, error=str(e))

        if self._closed:
            return entry
        current = self.sending.pop(client_message_id, None)
        confirmed = _extract_message(response) if isinstance(response, dict) else None
        if confirmed is not None and confirmed.get("id") is not None:
            self._apply_confirmed({**confirmed, "client_message_id": client_message_id})
            return self.messages[find_message(self.messages, confirmed["id"])]
        if current is None:
            # The realtime echo already reconciled this send.
            for message in self.messages:
                if message.get("client_message_id") == client_message_id and not message.get("optimistic"):
                    return message
            return entry
        return self._mark(client_message_id, DELIVERED)

    def _mark(self, client_message_id: str, status: str, **extra: Any) -> dict[str, Any]:
        index = find_message(self.messages, f"local:{client_message_id}")
        if index is None:
            return self.sending.get(client_message_id, {})
        updated = {**self.messages[index], "status": status, **extra}
        messages = list(self.messages)
        messages[index] = updated
        self._set_messages(messages)
        if status == FAILED:
            self.sending[client_message_id] = updated
        return updated

    def _drop_optimistic(self, client_message_id: str) -> None:
        self.sending.pop(client_message_id, None)
        self._set_messages([
            m for m in self.messages
            if not (m.get("optimistic") and m.get("client_message_id") == client_message_id)
        ])

    def _apply_confirmed(self, message: dict[str, Any]) -> dict[str, Any]:
        cid = message.get("client_message_id")
        if cid:
            self._drop_optimistic(cid)
        confirmed = {**message, "status": DELIVERED}
        confirmed.pop("optimistic", None)
        self.messages = upsert_message(self.messages, confirmed)
        return confirmed

    # -- receive path -----------------------------------------------------------

    def handle_realtime(self, payload: Any) -> Optional[dict[str, Any]]:
        """Apply one realtime delivery. Returns the authoritative message, or None if ignored."""
        if self._closed:
            return None
        meta = payload.get("meta") if isinstance(payload, dict) else None
        event_id = (meta or {}).get("event_id")
        if event_id and not self._seen_events.add(str(event_id)):
            logger.debug("Duplicate guest chat event ignored: %s", event_id)
            return None

        message = _extract_message(payload)
        if message is None or message.get("id") is None:
            logger.debug("Guest chat delivery without a message ignored")
            return None

        confirmed = self._apply_confirmed(message)
        if self._store is not None and self.conversation_id is not None:
            event_type = "guest_message_created" if confirmed.get("sender_type") == "guest" else "staff_message_created"
            self._store.handle_event(Envelope(
                category=Category.GUEST_CHAT,
                type=event_type,
                payload={**confirmed, "conversation_id": self.conversation_id},
                meta=EventMeta(**(meta or {})),
            ))
        return confirmed

    # -- resync and pagination --------------------------------------------------

    async def sync(self) -> None:
        """Re-fetch the latest page and merge by id, keeping unconfirmed optimistic entries."""
        try:
            latest = await self._api.get_messages(limit=self._page_size)
        except (ApiError, httpx.HTTPError) as e:
            logger.error("Guest chat resync failed: %s", e)
            return
        if self._closed:
            return

        merged = merge_by_id(self._authoritative(), [{**m, "status": DELIVERED} for m in latest])
        confirmed_ids = {m.get("client_message_id") for m in merged if m.get("client_message_id")}
        pending = [m for m in self.messages if m.get("optimistic") and m.get("client_message_id") not in confirmed_ids]
        for cid in confirmed_ids:
            self.sending.pop(cid, None)
        self._set_messages(merged + pending)
        self._mirror_all()

    async def load_older(self) -> int:
        """Fetch the page before the oldest loaded message. Returns the number fetched."""
        if not self.messages:
            return 0
        cursor = self.messages[0].get("id")
        if is_local_id(cursor):
            raise CursorError(str(cursor))
        older = await self._api.get_messages(limit=self._page_size, before=cursor)
        if self._closed or not older:
            return len(older or [])
        pending = [m for m in self.messages if m.get("optimistic")]
        self._set_messages(merge_by_id([{**m, "status": DELIVERED} for m in older], self._authoritative()) + pending)
        self._mirror_all()
        return len(older)
