"""
Guest chat store — conversations between hotel guests and staff.

Two counters per conversation: `unread_count_for_staff` grows with guest
messages, `unread_count_for_guest` grows with staff messages, and only while
the conversation is not the active one.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from hotelmate_realtime.models.envelope import Category, Envelope
from hotelmate_realtime.models.state import Action, GuestChatState, coerce_id
from hotelmate_realtime.stores.base import DomainStore
from hotelmate_realtime.stores.ordering import find_message, merge_by_id, sort_messages, upsert_message

logger = logging.getLogger(__name__)


class GuestChatAction:
    INIT_CONVERSATIONS_FROM_API = "INIT_CONVERSATIONS_FROM_API"
    INIT_MESSAGES_FOR_CONVERSATION = "INIT_MESSAGES_FOR_CONVERSATION"
    SET_ACTIVE_CONVERSATION = "SET_ACTIVE_CONVERSATION"
    SET_CONTEXT = "SET_CONTEXT"
    GUEST_MESSAGE_RECEIVED = "GUEST_MESSAGE_RECEIVED"
    STAFF_MESSAGE_SENT = "STAFF_MESSAGE_SENT"
    MESSAGE_EDITED = "MESSAGE_EDITED"
    MESSAGE_DELETED = "MESSAGE_DELETED"
    MESSAGE_READ_UPDATE = "MESSAGE_READ_UPDATE"
    CONVERSATION_CREATED = "CONVERSATION_CREATED"
    CONVERSATION_METADATA_UPDATED = "CONVERSATION_METADATA_UPDATED"
    UNREAD_UPDATED = "UNREAD_UPDATED"
    MARK_CONVERSATION_READ_FOR_STAFF = "MARK_CONVERSATION_READ_FOR_STAFF"
    MARK_CONVERSATION_READ_FOR_GUEST = "MARK_CONVERSATION_READ_FOR_GUEST"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def format_conversation(conv: dict[str, Any]) -> dict[str, Any]:
    return {
        **conv,
        "id": coerce_id(conv.get("id")),
        "room_number": conv.get("room_number") or conv.get("roomNumber"),
        "guest_name": conv.get("guest_name") or conv.get("guestName"),
        "unread_count_for_staff": conv.get("unread_count_for_staff") or 0,
        "unread_count_for_guest": conv.get("unread_count_for_guest") or 0,
        "updated_at": conv.get("updated_at") or _now(),
        "participants": conv.get("participants") or [],
    }


def format_message(message: dict[str, Any], sender_type: Optional[str] = None) -> dict[str, Any]:
    text = message.get("message") if message.get("message") is not None else message.get("body")
    return {
        **message,
        "id": coerce_id(message.get("id")),
        "sender_type": message.get("sender_type") or message.get("senderType") or sender_type,
        "message": text,
        "body": text,
        "attachments": message.get("attachments") or [],
        "timestamp": message.get("timestamp") or message.get("created_at") or message.get("createdAt"),
        "read_by_staff": bool(message.get("read_by_staff")),
        "read_by_guest": bool(message.get("read_by_guest")),
    }


def _message_of(payload: dict[str, Any]) -> dict[str, Any]:
    nested = payload.get("message")
    return nested if isinstance(nested, dict) else payload


class GuestChatStore(DomainStore[GuestChatState]):
    category = Category.GUEST_CHAT
    state_class = GuestChatState

    def reducers(self):
        A = GuestChatAction
        return {
            A.INIT_CONVERSATIONS_FROM_API: self._init_conversations,
            A.INIT_MESSAGES_FOR_CONVERSATION: self._init_messages,
            A.SET_ACTIVE_CONVERSATION: self._set_active,
            A.SET_CONTEXT: self._set_context,
            A.GUEST_MESSAGE_RECEIVED: self._receive_message,
            A.STAFF_MESSAGE_SENT: self._receive_message,
            A.MESSAGE_EDITED: self._message_edited,
            A.MESSAGE_DELETED: self._message_deleted,
            A.MESSAGE_READ_UPDATE: self._message_read,
            A.CONVERSATION_CREATED: self._conversation_created,
            A.CONVERSATION_METADATA_UPDATED: self._update_metadata,
            A.UNREAD_UPDATED: self._unread_updated,
            A.MARK_CONVERSATION_READ_FOR_STAFF: self._mark_read_for("unread_count_for_staff"),
            A.MARK_CONVERSATION_READ_FOR_GUEST: self._mark_read_for("unread_count_for_guest"),
        }

    def event_handlers(self):
        return {
            "guest_message_created": self._on_guest_message,
            "staff_message_created": self._on_staff_message,
            "message_created": self._on_message,
            "message_edited": self._on_message_edited,
            "message_updated": self._on_message_edited,
            "message_deleted": self._on_message_deleted,
            "message_read": self._on_message_read,
            "messages_read": self._on_message_read,
            "unread_updated": self._on_unread_updated,
            "conversation_created": self._on_conversation_created,
            "conversation_updated": self._on_conversation_updated,
        }

    # -- reducers ---------------------------------------------------------------

    @staticmethod
    def _put_conversation(state: GuestChatState, conversation: dict[str, Any]) -> GuestChatState:
        return state.model_copy(update={
            "conversations_by_id": {**state.conversations_by_id, conversation["id"]: conversation},
        })

    @staticmethod
    def _put_messages(state: GuestChatState, conv_id: Any, messages: list[dict[str, Any]]) -> GuestChatState:
        return state.model_copy(update={
            "messages_by_conversation_id": {**state.messages_by_conversation_id, conv_id: messages},
        })

    def _init_conversations(self, state: GuestChatState, payload: dict[str, Any]) -> GuestChatState:
        conversations = dict(state.conversations_by_id)
        for conv in payload.get("conversations") or []:
            if conv.get("id") is None:
                continue
            formatted = format_conversation(conv)
            conversations[formatted["id"]] = formatted
        return state.model_copy(update={"conversations_by_id": conversations})

    def _init_messages(self, state: GuestChatState, payload: dict[str, Any]) -> GuestChatState:
        conv_id = coerce_id(payload["conversation_id"])
        messages = merge_by_id(format_message(m) for m in payload.get("messages") or [])
        return self._put_messages(state, conv_id, messages)

    def _set_active(self, state: GuestChatState, payload: dict[str, Any]) -> GuestChatState:
        conv_id = coerce_id(payload.get("conversation_id"))
        state = state.model_copy(update={"active_conversation_id": conv_id})
        conversation = state.conversations_by_id.get(conv_id)
        if conversation is None:
            return state
        return self._put_conversation(state, {**conversation, "unread_count_for_staff": 0})

    def _set_context(self, state: GuestChatState, payload: dict[str, Any]) -> GuestChatState:
        return state.model_copy(update={"context": payload.get("context")})

    def _receive_message(self, state: GuestChatState, payload: dict[str, Any]) -> GuestChatState:
        conv_id = coerce_id(payload["conversation_id"])
        message = payload["message"]
        current = state.messages_by_conversation_id.get(conv_id, [])
        is_new = find_message(current, message["id"]) is None
        state = self._put_messages(state, conv_id, upsert_message(current, message))

        conversation = state.conversations_by_id.get(conv_id)
        if conversation is None or not is_new:
            return state

        is_active = state.active_conversation_id == conv_id
        from_guest = message.get("sender_type") == "guest"
        updated = {
            **conversation,
            "last_message": {
                "body": message.get("message"),
                "sender_type": message.get("sender_type"),
                "created_at": message.get("timestamp"),
                "has_attachments": bool(message.get("attachments")),
            },
            "updated_at": message.get("timestamp") or _now(),
        }
        if not is_active:
            counter = "unread_count_for_staff" if from_guest else "unread_count_for_guest"
            updated[counter] = conversation.get(counter, 0) + 1
        return self._put_conversation(state, updated)

    def _message_edited(self, state: GuestChatState, payload: dict[str, Any]) -> GuestChatState:
        conv_id = coerce_id(payload["conversation_id"])
        current = state.messages_by_conversation_id.get(conv_id, [])
        index = find_message(current, payload["message_id"])
        if index is None:
            logger.warning("[guest_chat] Edit for unknown message %s in %s", payload["message_id"], conv_id)
            return state
        messages = list(current)
        messages[index] = {**messages[index], **payload["fields"]}
        return self._put_messages(state, conv_id, sort_messages(messages))

    def _message_deleted(self, state: GuestChatState, payload: dict[str, Any]) -> GuestChatState:
        conv_id = coerce_id(payload["conversation_id"])
        current = state.messages_by_conversation_id.get(conv_id, [])
        index = find_message(current, payload["message_id"])
        if index is None:
            logger.warning("[guest_chat] Delete for unknown message %s in %s", payload["message_id"], conv_id)
            return state
        return self._put_messages(state, conv_id, current[:index] + current[index + 1:])

    def _message_read(self, state: GuestChatState, payload: dict[str, Any]) -> GuestChatState:
        conv_id = coerce_id(payload["conversation_id"])
        targets = {coerce_id(m) for m in payload.get("message_ids") or []}
        current = state.messages_by_conversation_id.get(conv_id)
        if not current or not targets:
            return state

        reader = payload.get("reader")
        flags = {k: payload[k] for k in ("read_by_staff", "read_by_guest") if payload.get(k) is not None}
        messages = []
        for message in current:
            if coerce_id(message.get("id")) in targets:
                message = {**message, **flags}
                if reader:
                    read_by = [r for r in message.get("read_by") or [] if r != reader]
                    message["read_by"] = read_by + [reader]
            messages.append(message)
        return self._put_messages(state, conv_id, messages)

    def _conversation_created(self, state: GuestChatState, payload: dict[str, Any]) -> GuestChatState:
        return self._put_conversation(state, format_conversation(payload["conversation"]))

    def _update_metadata(self, state: GuestChatState, payload: dict[str, Any]) -> GuestChatState:
        conv_id = coerce_id(payload["conversation_id"])
        conversation = state.conversations_by_id.get(conv_id)
        if conversation is None:
            logger.warning("[guest_chat] Metadata update for unknown conversation %s", conv_id)
            return state
        return self._put_conversation(state, {**conversation, **payload["metadata"], "id": conv_id})

    def _unread_updated(self, state: GuestChatState, payload: dict[str, Any]) -> GuestChatState:
        if payload.get("is_total_update"):
            counts = {coerce_id(k): v for k, v in (payload.get("conversations") or {}).items()}
            conversations = {
                conv_id: {**conv, "unread_count_for_staff": counts.get(conv_id, 0)}
                for conv_id, conv in state.conversations_by_id.items()
            }
            return state.model_copy(update={"conversations_by_id": conversations})

        conv_id = coerce_id(payload["conversation_id"])
        conversation = state.conversations_by_id.get(conv_id)
        if conversation is None:
            logger.warning("[guest_chat] Unread update for unknown conversation %s", conv_id)
            return state
        return self._put_conversation(state, {
            **conversation,
            "unread_count_for_staff": payload.get("unread_count") or 0,
            "updated_at": payload.get("updated_at") or _now(),
        })

    def _mark_read_for(self, counter: str):
        def reducer(state: GuestChatState, payload: dict[str, Any]) -> GuestChatState:
            conv_id = coerce_id(payload.get("conversation_id"))
            conversation = state.conversations_by_id.get(conv_id)
            if conversation is None:
                logger.warning("[guest_chat] Mark read for unknown conversation %s", conv_id)
                return state
            return self._put_conversation(state, {**conversation, counter: 0})
        return reducer

    # -- realtime events --------------------------------------------------------

    def _receive(self, envelope: Envelope, conv_id: Any, sender_type: Optional[str]) -> None:
        raw = _message_of(envelope.payload)
        if raw.get("id") is None:
            logger.warning("[guest_chat] Message event without id in %s", conv_id)
            return
        message = format_message(raw, sender_type)
        action = (
            GuestChatAction.GUEST_MESSAGE_RECEIVED
            if message["sender_type"] == "guest"
            else GuestChatAction.STAFF_MESSAGE_SENT
        )
        self.dispatch(Action(action, {"conversation_id": conv_id, "message": message}))

    def _on_guest_message(self, envelope: Envelope, conv_id: Any) -> None:
        self._receive(envelope, conv_id, "guest")

    def _on_staff_message(self, envelope: Envelope, conv_id: Any) -> None:
        self._receive(envelope, conv_id, "staff")

    def _on_message(self, envelope: Envelope, conv_id: Any) -> None:
        self._receive(envelope, conv_id, None)

    def _on_message_edited(self, envelope: Envelope, conv_id: Any) -> None:
        message_id = envelope.secondary_id
        if message_id is None:
            logger.warning("[guest_chat] Edit event without message id in %s", conv_id)
            return
        raw = _message_of(envelope.payload)
        fields = {k: v for k, v in raw.items() if k not in ("conversation_id", "message_id")}
        if "body" in fields and "message" not in fields:
            fields["message"] = fields["body"]
        self.dispatch(Action(GuestChatAction.MESSAGE_EDITED, {
            "conversation_id": conv_id, "message_id": message_id, "fields": fields,
        }))

    def _on_message_deleted(self, envelope: Envelope, conv_id: Any) -> None:
        message_id = envelope.secondary_id
        if message_id is None:
            logger.warning("[guest_chat] Delete event without message id in %s", conv_id)
            return
        self.dispatch(Action(GuestChatAction.MESSAGE_DELETED, {"conversation_id": conv_id, "message_id": message_id}))

    def _on_message_read(self, envelope: Envelope, conv_id: Any) -> None:
        payload = envelope.payload
        message_ids = payload.get("message_ids")
        if message_ids is None:
            message_ids = [payload["message_id"]] if payload.get("message_id") is not None else []
        reader = None
        if payload.get("read_by_staff"):
            reader = {"type": "staff", "id": payload.get("staff_id"), "read_at": payload.get("read_at") or envelope.meta.ts}
        elif payload.get("read_by_guest"):
            reader = {"type": "guest", "read_at": payload.get("read_at") or envelope.meta.ts}
        self.dispatch(Action(GuestChatAction.MESSAGE_READ_UPDATE, {
            "conversation_id": conv_id,
            "message_ids": message_ids,
            "read_by_staff": payload.get("read_by_staff"),
            "read_by_guest": payload.get("read_by_guest"),
            "reader": reader,
        }))

    def _on_unread_updated(self, envelope: Envelope, conv_id: Any) -> None:
        self.dispatch(Action(GuestChatAction.UNREAD_UPDATED, {**envelope.payload, "conversation_id": conv_id}))

    def _on_conversation_created(self, envelope: Envelope, conv_id: Any) -> None:
        self.dispatch(Action(GuestChatAction.CONVERSATION_CREATED, {
            "conversation": {**envelope.payload, "id": conv_id},
        }))

    def _on_conversation_updated(self, envelope: Envelope, conv_id: Any) -> None:
        metadata = {k: v for k, v in envelope.payload.items() if k != "conversation_id"}
        self.dispatch(Action(GuestChatAction.CONVERSATION_METADATA_UPDATED, {
            "conversation_id": conv_id, "metadata": metadata,
        }))

    # -- direct actions ---------------------------------------------------------

    def init_conversations(self, conversations: list[dict[str, Any]]) -> None:
        self.dispatch(Action(GuestChatAction.INIT_CONVERSATIONS_FROM_API, {"conversations": conversations}))

    def init_messages(self, conversation_id: Any, messages: list[dict[str, Any]]) -> None:
        self.dispatch(Action(GuestChatAction.INIT_MESSAGES_FOR_CONVERSATION, {
            "conversation_id": conversation_id, "messages": messages,
        }))

    def set_context(self, context: Optional[dict[str, Any]]) -> None:
        self.dispatch(Action(GuestChatAction.SET_CONTEXT, {"context": context}))

    def set_active_conversation(self, conversation_id: Optional[Any]) -> None:
        self.dispatch(Action(GuestChatAction.SET_ACTIVE_CONVERSATION, {"conversation_id": conversation_id}))

    def mark_read_for_staff(self, conversation_id: Any) -> None:
        self.dispatch(Action(GuestChatAction.MARK_CONVERSATION_READ_FOR_STAFF, {"conversation_id": conversation_id}))

    def mark_read_for_guest(self, conversation_id: Any) -> None:
        self.dispatch(Action(GuestChatAction.MARK_CONVERSATION_READ_FOR_GUEST, {"conversation_id": conversation_id}))

    def messages(self, conversation_id: Any) -> list[dict[str, Any]]:
        return self.state.messages_by_conversation_id.get(coerce_id(conversation_id), [])
