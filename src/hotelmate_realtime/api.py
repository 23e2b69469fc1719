"""
REST resource fetchers used for bulk init, guest chat and mark-read.

Endpoints:
- Staff:  /staff_chat/{slug}/conversations/…, /guest_chat/{slug}/conversations/…,
          /room_services/{slug}/orders/, /bookings/{slug}/, /staff/hotel/{slug}/room-bookings,
          /staff/{slug}/
- Guest:  /guest/hotel/{slug}/chat/context|messages?token=…
"""

import logging
from typing import Any, Optional

from hotelmate_realtime.transport.http import HttpClient

logger = logging.getLogger(__name__)


def as_list(data: Any) -> list[dict[str, Any]]:
    """Accept bare lists and DRF-style {"results": [...]} pages."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("results", "data", "items"):
            if isinstance(data.get(key), list):
                return data[key]
    return []


class HotelAPI:
    """Staff-side bulk fetchers behind the INIT_*_FROM_API transitions."""

    def __init__(self, http: HttpClient, hotel_slug: str):
        self._http = http
        self.hotel_slug = hotel_slug

    async def staff_conversations(self) -> list[dict[str, Any]]:
        return as_list(await self._http.get(f"/staff_chat/{self.hotel_slug}/conversations/"))

    async def staff_messages(self, conversation_id: Any, limit: int = 50) -> list[dict[str, Any]]:
        data = await self._http.get(
            f"/staff_chat/{self.hotel_slug}/conversations/{conversation_id}/messages/",
            params={"limit": limit},
        )
        return as_list(data)

    async def guest_conversations(self) -> list[dict[str, Any]]:
        return as_list(await self._http.get(f"/guest_chat/{self.hotel_slug}/conversations/"))

    async def room_service_orders(self) -> list[dict[str, Any]]:
        return as_list(await self._http.get(f"/room_services/{self.hotel_slug}/orders/"))

    async def service_bookings(self) -> list[dict[str, Any]]:
        return as_list(await self._http.get(f"/bookings/{self.hotel_slug}/"))

    async def room_bookings(self) -> list[dict[str, Any]]:
        return as_list(await self._http.get(f"/staff/hotel/{self.hotel_slug}/room-bookings"))

    async def staff(self) -> list[dict[str, Any]]:
        return as_list(await self._http.get(f"/staff/{self.hotel_slug}/"))

    async def mark_conversation_read(self, conversation_id: Any, conversation_type: str = "guest") -> None:
        if conversation_type == "staff":
            path = f"/staff_chat/{self.hotel_slug}/conversations/{conversation_id}/mark_as_read/"
        else:
            path = f"/guest_chat/{self.hotel_slug}/conversations/{conversation_id}/mark_read/"
        await self._http.post(path)


class GuestChatAPI:
    """Token-authenticated guest endpoints. The token travels as a query parameter."""

    def __init__(self, http: HttpClient, hotel_slug: str, token: str):
        self._http = http
        self.hotel_slug = hotel_slug
        self.token = token

    @property
    def _base(self) -> str:
        return f"/guest/hotel/{self.hotel_slug}/chat"

    async def get_context(self) -> dict[str, Any]:
        data = await self._http.get(f"{self._base}/context", params={"token": self.token}, authenticated=False)
        return data or {}

    async def get_messages(self, limit: int = 50, before: Optional[Any] = None) -> list[dict[str, Any]]:
        params = {"token": self.token, "limit": limit, "before": before}
        return as_list(await self._http.get(f"{self._base}/messages", params=params, authenticated=False))

    async def send_message(
        self,
        message: str,
        client_message_id: str,
        reply_to: Optional[Any] = None,
    ) -> Any:
        body: dict[str, Any] = {"message": message, "client_message_id": client_message_id}
        if reply_to is not None:
            body["reply_to"] = reply_to
        return await self._http.post(
            f"{self._base}/messages", body, params={"token": self.token}, authenticated=False,
        )

    def pusher_auth_endpoint(self, base_url: str) -> str:
        return f"{base_url.rstrip('/')}{self._base}/pusher/auth?token={self.token}"
