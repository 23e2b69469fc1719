"""
Message ordering shared by the chat stores and the guest chat session.

Lists are kept sorted by (timestamp, id) ascending after every mutation;
arrival order is never trusted.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from hotelmate_realtime.models.state import coerce_id


def parse_timestamp(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    if isinstance(value, (int, float)):
        # Epoch milliseconds from JS clients, seconds otherwise.
        return value / 1000.0 if value > 1e12 else float(value)
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def message_time(message: dict[str, Any]) -> float:
    return parse_timestamp(message.get("timestamp") or message.get("created_at") or message.get("createdAt"))


def message_sort_key(message: dict[str, Any]) -> tuple[float, int, int, str]:
    msg_id = coerce_id(message.get("id"))
    if isinstance(msg_id, int):
        return (message_time(message), 0, msg_id, "")
    # Local ids sort after server ids that share a timestamp.
    return (message_time(message), 1, 0, str(msg_id or ""))


def sort_messages(messages: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(messages, key=message_sort_key)


def find_message(messages: list[dict[str, Any]], message_id: Any) -> Optional[int]:
    target = coerce_id(message_id)
    for index, message in enumerate(messages):
        if coerce_id(message.get("id")) == target:
            return index
    return None


def upsert_message(messages: list[dict[str, Any]], message: dict[str, Any]) -> list[dict[str, Any]]:
    """Insert or merge by id, returning a new sorted list."""
    index = find_message(messages, message.get("id"))
    updated = list(messages)
    if index is None:
        updated.append(message)
    else:
        updated[index] = {**updated[index], **message}
    return sort_messages(updated)


def merge_by_id(*batches: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Later batches win on id collisions. Messages without an id are dropped."""
    merged: dict[Any, dict[str, Any]] = {}
    for batch in batches:
        for message in batch:
            msg_id = coerce_id(message.get("id"))
            if msg_id is None:
                continue
            merged[msg_id] = {**merged.get(msg_id, {}), **message}
    return sort_messages(merged.values())
