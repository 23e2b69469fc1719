"""
Staff chat store — conversations between staff members.

Unread counter per conversation:
- reset to 0 when the conversation becomes active, on mark-read, or when the
  current staff member's own read receipt arrives
- incremented only by inbound messages from someone else while inactive
- replaced wholesale by an `is_total_update` unread refresh
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from hotelmate_realtime.models.envelope import Category, Envelope
from hotelmate_realtime.models.state import Action, StaffChatState, coerce_id
from hotelmate_realtime.stores.base import DomainStore
from hotelmate_realtime.stores.ordering import find_message, sort_messages, upsert_message

logger = logging.getLogger(__name__)

# Transport event names for this domain use a longer, prefixed vocabulary.
STAFF_CHAT_EVENT_PREFIX = "realtime_staff_chat_"


class StaffChatAction:
    INIT_CONVERSATIONS_FROM_API = "INIT_CONVERSATIONS_FROM_API"
    INIT_MESSAGES_FOR_CONVERSATION = "INIT_MESSAGES_FOR_CONVERSATION"
    SET_ACTIVE_CONVERSATION = "SET_ACTIVE_CONVERSATION"
    RECEIVE_MESSAGE = "RECEIVE_MESSAGE"
    MESSAGE_UPDATED = "MESSAGE_UPDATED"
    MESSAGE_DELETED = "MESSAGE_DELETED"
    RECEIVE_READ_RECEIPT = "RECEIVE_READ_RECEIPT"
    MARK_CONVERSATION_READ = "MARK_CONVERSATION_READ"
    UPDATE_CONVERSATION_METADATA = "UPDATE_CONVERSATION_METADATA"
    UNREAD_UPDATED = "UNREAD_UPDATED"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _message_of(payload: dict[str, Any]) -> dict[str, Any]:
    nested = payload.get("message")
    return nested if isinstance(nested, dict) else payload


def _total(conversations: dict[Any, dict[str, Any]]) -> int:
    return sum(conv.get("unread_count", 0) for conv in conversations.values())


class StaffChatStore(DomainStore[StaffChatState]):
    category = Category.STAFF_CHAT
    state_class = StaffChatState

    def __init__(self, current_staff_id: Any = None, **kwargs: Any):
        self.current_staff_id = coerce_id(current_staff_id)
        super().__init__(**kwargs)

    def reducers(self):
        A = StaffChatAction
        return {
            A.INIT_CONVERSATIONS_FROM_API: self._init_conversations,
            A.INIT_MESSAGES_FOR_CONVERSATION: self._init_messages,
            A.SET_ACTIVE_CONVERSATION: self._set_active,
            A.RECEIVE_MESSAGE: self._receive_message,
            A.MESSAGE_UPDATED: self._message_updated,
            A.MESSAGE_DELETED: self._message_deleted,
            A.RECEIVE_READ_RECEIPT: self._read_receipt,
            A.MARK_CONVERSATION_READ: self._mark_read,
            A.UPDATE_CONVERSATION_METADATA: self._update_metadata,
            A.UNREAD_UPDATED: self._unread_updated,
        }

    def event_handlers(self):
        return {
            "message_created": self._on_message,
            "new_message": self._on_message,
            "message_sent": self._on_message,
            "message_edited": self._on_message_edited,
            "message_updated": self._on_message_edited,
            "message_deleted": self._on_message_deleted,
            "read_receipt": self._on_read_receipt,
            "messages_read": self._on_read_receipt,
            "message_read": self._on_read_receipt,
            "conversation_update": self._on_conversation_updated,
            "conversation_updated": self._on_conversation_updated,
            "unread_updated": self._on_unread_updated,
        }

    def event_key(self, event_type: str) -> str:
        if event_type.startswith(STAFF_CHAT_EVENT_PREFIX):
            return event_type[len(STAFF_CHAT_EVENT_PREFIX):]
        return event_type

    # -- reducers ---------------------------------------------------------------

    def _with_conversation(self, state: StaffChatState, conv_id: Any, conversation: dict[str, Any]) -> StaffChatState:
        conversations = {**state.conversations_by_id, conv_id: conversation}
        return state.model_copy(update={"conversations_by_id": conversations, "total_unread": _total(conversations)})

    def _init_conversations(self, state: StaffChatState, payload: dict[str, Any]) -> StaffChatState:
        conversations = dict(state.conversations_by_id)
        for conv in payload.get("conversations") or []:
            conv_id = coerce_id(conv.get("id"))
            if conv_id is None:
                continue
            conversations[conv_id] = {
                **conv,
                "id": conv_id,
                "title": conv.get("title") or "",
                "participants": conv.get("participants") or [],
                "unread_count": conv.get("unread_count") or 0,
                "last_message": conv.get("last_message"),
                "updated_at": conv.get("updated_at") or _now(),
            }
        return state.model_copy(update={"conversations_by_id": conversations, "total_unread": _total(conversations)})

    def _init_messages(self, state: StaffChatState, payload: dict[str, Any]) -> StaffChatState:
        conv_id = coerce_id(payload["conversation_id"])
        messages = sort_messages(m for m in payload.get("messages") or [] if m.get("id") is not None)
        return state.model_copy(update={
            "messages_by_conversation_id": {**state.messages_by_conversation_id, conv_id: messages},
        })

    def _set_active(self, state: StaffChatState, payload: dict[str, Any]) -> StaffChatState:
        conv_id = coerce_id(payload.get("conversation_id"))
        state = state.model_copy(update={"active_conversation_id": conv_id})
        conversation = state.conversations_by_id.get(conv_id)
        if conversation is None:
            return state
        return self._with_conversation(state, conv_id, {**conversation, "unread_count": 0})

    def _receive_message(self, state: StaffChatState, payload: dict[str, Any]) -> StaffChatState:
        conv_id = coerce_id(payload["conversation_id"])
        message = payload["message"]
        current = state.messages_by_conversation_id.get(conv_id, [])
        is_new = find_message(current, message.get("id")) is None
        messages = upsert_message(current, message)
        state = state.model_copy(update={
            "messages_by_conversation_id": {**state.messages_by_conversation_id, conv_id: messages},
        })

        conversation = state.conversations_by_id.get(conv_id)
        if conversation is None or not is_new:
            return state

        is_active = state.active_conversation_id == conv_id
        from_self = (
            self.current_staff_id is not None
            and coerce_id(message.get("sender_id") or message.get("sender")) == self.current_staff_id
        )
        unread = conversation.get("unread_count", 0)
        if is_active:
            unread = 0
        elif not from_self:
            unread += 1
        timestamp = message.get("timestamp") or _now()
        return self._with_conversation(state, conv_id, {
            **conversation,
            "unread_count": unread,
            "last_message": {
                "message": message.get("message") or "",
                "has_attachments": bool(message.get("attachments")),
                "timestamp": timestamp,
            },
            "updated_at": timestamp,
        })

    def _message_updated(self, state: StaffChatState, payload: dict[str, Any]) -> StaffChatState:
        conv_id = coerce_id(payload["conversation_id"])
        current = state.messages_by_conversation_id.get(conv_id, [])
        index = find_message(current, payload["message_id"])
        if index is None:
            logger.warning("[staff_chat] Edit for unknown message %s in %s", payload["message_id"], conv_id)
            return state
        messages = list(current)
        messages[index] = {**messages[index], **payload["fields"]}
        return state.model_copy(update={
            "messages_by_conversation_id": {**state.messages_by_conversation_id, conv_id: sort_messages(messages)},
        })

    def _message_deleted(self, state: StaffChatState, payload: dict[str, Any]) -> StaffChatState:
        conv_id = coerce_id(payload["conversation_id"])
        current = state.messages_by_conversation_id.get(conv_id, [])
        index = find_message(current, payload["message_id"])
        if index is None:
            logger.warning("[staff_chat] Delete for unknown message %s in %s", payload["message_id"], conv_id)
            return state
        messages = current[:index] + current[index + 1:]
        return state.model_copy(update={
            "messages_by_conversation_id": {**state.messages_by_conversation_id, conv_id: messages},
        })

    def _read_receipt(self, state: StaffChatState, payload: dict[str, Any]) -> StaffChatState:
        conv_id = coerce_id(payload["conversation_id"])
        reader = payload["reader"]
        reader_id = coerce_id(reader.get("staff_id"))
        targets = {coerce_id(m) for m in payload.get("message_ids") or []}

        current = state.messages_by_conversation_id.get(conv_id)
        if current and targets:
            messages = []
            for message in current:
                if coerce_id(message.get("id")) in targets:
                    read_by = [r for r in message.get("read_by") or [] if coerce_id(r.get("staff_id")) != reader_id]
                    message = {**message, "read_by": read_by + [reader]}
                messages.append(message)
            state = state.model_copy(update={
                "messages_by_conversation_id": {**state.messages_by_conversation_id, conv_id: messages},
            })

        conversation = state.conversations_by_id.get(conv_id)
        if conversation is not None and reader_id is not None and reader_id == self.current_staff_id:
            state = self._with_conversation(state, conv_id, {**conversation, "unread_count": 0})
        return state

    def _mark_read(self, state: StaffChatState, payload: dict[str, Any]) -> StaffChatState:
        conv_id = coerce_id(payload.get("conversation_id"))
        conversation = state.conversations_by_id.get(conv_id)
        if conversation is None:
            logger.warning("[staff_chat] Mark read for unknown conversation %s", conv_id)
            return state
        return self._with_conversation(state, conv_id, {**conversation, "unread_count": 0})

    def _update_metadata(self, state: StaffChatState, payload: dict[str, Any]) -> StaffChatState:
        conv_id = coerce_id(payload["conversation_id"])
        conversation = state.conversations_by_id.get(conv_id)
        if conversation is None:
            logger.warning("[staff_chat] Metadata update for unknown conversation %s", conv_id)
            return state
        return self._with_conversation(state, conv_id, {**conversation, **payload["metadata"], "id": conv_id})

    def _unread_updated(self, state: StaffChatState, payload: dict[str, Any]) -> StaffChatState:
        if payload.get("is_total_update"):
            counts = {coerce_id(k): v for k, v in (payload.get("conversations") or {}).items()}
            conversations = {
                conv_id: {**conv, "unread_count": counts.get(conv_id, 0)} if counts else conv
                for conv_id, conv in state.conversations_by_id.items()
            }
            total = payload.get("total_unread")
            return state.model_copy(update={
                "conversations_by_id": conversations,
                "total_unread": total if total is not None else _total(conversations),
            })

        conv_id = coerce_id(payload.get("conversation_id"))
        conversation = state.conversations_by_id.get(conv_id)
        if conversation is None:
            logger.warning("[staff_chat] Unread update for unknown conversation %s", conv_id)
            return state
        return self._with_conversation(state, conv_id, {**conversation, "unread_count": payload.get("unread_count") or 0})

    # -- realtime events --------------------------------------------------------

    def _on_message(self, envelope: Envelope, conv_id: Any) -> None:
        message = _message_of(envelope.payload)
        if message.get("id") is None:
            logger.warning("[staff_chat] Message event without message id in %s", conv_id)
            return
        self.dispatch(Action(StaffChatAction.RECEIVE_MESSAGE, {"conversation_id": conv_id, "message": message}))

    def _on_message_edited(self, envelope: Envelope, conv_id: Any) -> None:
        message = _message_of(envelope.payload)
        message_id = envelope.secondary_id
        if message_id is None:
            logger.warning("[staff_chat] Edit event without message id in %s", conv_id)
            return
        fields = {k: v for k, v in message.items() if k not in ("conversation_id", "message_id")}
        self.dispatch(Action(StaffChatAction.MESSAGE_UPDATED, {
            "conversation_id": conv_id, "message_id": message_id, "fields": fields,
        }))

    def _on_message_deleted(self, envelope: Envelope, conv_id: Any) -> None:
        message_id = envelope.secondary_id
        if message_id is None:
            logger.warning("[staff_chat] Delete event without message id in %s", conv_id)
            return
        self.dispatch(Action(StaffChatAction.MESSAGE_DELETED, {"conversation_id": conv_id, "message_id": message_id}))

    def _on_read_receipt(self, envelope: Envelope, conv_id: Any) -> None:
        payload = envelope.payload
        message_ids = payload.get("message_ids")
        if message_ids is None:
            single = payload.get("message_id")
            message_ids = [single] if single is not None else []
        reader = {
            "staff_id": payload.get("staff_id") or payload.get("read_by_staff_id"),
            "staff_name": payload.get("staff_name"),
            "read_at": payload.get("read_at") or envelope.meta.ts or _now(),
        }
        self.dispatch(Action(StaffChatAction.RECEIVE_READ_RECEIPT, {
            "conversation_id": conv_id, "message_ids": message_ids, "reader": reader,
        }))

    def _on_conversation_updated(self, envelope: Envelope, conv_id: Any) -> None:
        metadata = {k: v for k, v in envelope.payload.items() if k != "conversation_id"}
        self.dispatch(Action(StaffChatAction.UPDATE_CONVERSATION_METADATA, {
            "conversation_id": conv_id, "metadata": metadata,
        }))

    def _on_unread_updated(self, envelope: Envelope, conv_id: Any) -> None:
        payload = dict(envelope.payload)
        if not payload.get("is_total_update"):
            payload["conversation_id"] = conv_id
        self.dispatch(Action(StaffChatAction.UNREAD_UPDATED, payload))

    # -- direct actions ---------------------------------------------------------

    def init_conversations(self, conversations: list[dict[str, Any]]) -> None:
        self.dispatch(Action(StaffChatAction.INIT_CONVERSATIONS_FROM_API, {"conversations": conversations}))

    def init_messages(self, conversation_id: Any, messages: list[dict[str, Any]]) -> None:
        self.dispatch(Action(StaffChatAction.INIT_MESSAGES_FOR_CONVERSATION, {
            "conversation_id": conversation_id, "messages": messages,
        }))

    def set_active_conversation(self, conversation_id: Optional[Any]) -> None:
        self.dispatch(Action(StaffChatAction.SET_ACTIVE_CONVERSATION, {"conversation_id": conversation_id}))

    def mark_conversation_read(self, conversation_id: Any) -> None:
        self.dispatch(Action(StaffChatAction.MARK_CONVERSATION_READ, {"conversation_id": conversation_id}))

    def messages(self, conversation_id: Any) -> list[dict[str, Any]]:
        return self.state.messages_by_conversation_id.get(coerce_id(conversation_id), [])
