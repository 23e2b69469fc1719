"""
RealtimeHub — composition root.

Builds one store per domain, the notification feed, the router and the
channel registry, and wires them together by reference. Accessors raise
ProviderError outside start()/stop().
"""

import asyncio
import logging
from datetime import date
from typing import Any, Callable, Optional, Union

import httpx

from hotelmate_realtime.api import GuestChatAPI, HotelAPI
from hotelmate_realtime.channels import ChannelRegistry
from hotelmate_realtime.config import Settings
from hotelmate_realtime.dedup import DEFAULT_CAPACITY, DEFAULT_WINDOW_S, EventDeduplicator
from hotelmate_realtime.errors import ApiError, ProviderError
from hotelmate_realtime.guest_chat import GuestChatSession
from hotelmate_realtime.models.envelope import Category, Envelope, RawEvent
from hotelmate_realtime.models.state import Action
from hotelmate_realtime.router import EventRouter
from hotelmate_realtime.stores.attendance import AttendanceStore
from hotelmate_realtime.stores.base import DomainStore
from hotelmate_realtime.stores.guest_chat import GuestChatStore
from hotelmate_realtime.stores.notifications import DEFAULT_LIMIT, NotificationFeed
from hotelmate_realtime.stores.room_booking import RoomBookingStore
from hotelmate_realtime.stores.room_service import RoomServiceStore
from hotelmate_realtime.stores.service_booking import ServiceBookingStore
from hotelmate_realtime.stores.staff_chat import StaffChatStore
from hotelmate_realtime.transport.base import Transport
from hotelmate_realtime.transport.http import HttpClient

logger = logging.getLogger(__name__)


class RealtimeHub:
    def __init__(
        self,
        transport: Optional[Transport] = None,
        http: Optional[HttpClient] = None,
        hotel_slug: Optional[str] = None,
        staff_id: Optional[Any] = None,
        ledger_capacity: int = DEFAULT_CAPACITY,
        attendance_window_s: float = DEFAULT_WINDOW_S,
        notification_limit: int = DEFAULT_LIMIT,
        guest_page_size: int = 50,
        today: Callable[[], date] = date.today,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.transport = transport
        self.http = http
        self.hotel_slug = hotel_slug
        self.staff_id = staff_id
        self._ledger_capacity = ledger_capacity
        self._attendance_window_s = attendance_window_s
        self._notification_limit = notification_limit
        self._guest_page_size = guest_page_size
        self._today = today
        self._clock = clock

        self._stores: dict[Category, DomainStore] = {}
        self._notifications: Optional[NotificationFeed] = None
        self._router: Optional[EventRouter] = None
        self._registry: Optional[ChannelRegistry] = None
        self._started = False

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[Transport] = None) -> "RealtimeHub":
        if transport is None and settings.realtime_url:
            from hotelmate_realtime.transport.socketio import SocketIOTransport
            transport = SocketIOTransport(settings.realtime_url, token=settings.auth_token)
        return cls(
            transport=transport,
            http=HttpClient(base_url=settings.api_base_url, token=settings.auth_token),
            hotel_slug=settings.hotel_slug,
            staff_id=settings.staff_id,
            ledger_capacity=settings.ledger_capacity,
            attendance_window_s=settings.attendance_window_s,
            notification_limit=settings.notification_limit,
            guest_page_size=settings.guest_page_size,
        )

    # -- lifecycle --------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self._started

    def _build_stores(self) -> dict[Category, DomainStore]:
        def dedup() -> EventDeduplicator:
            return EventDeduplicator(self._ledger_capacity)

        attendance_kwargs: dict[str, Any] = {"window_s": self._attendance_window_s}
        if self._clock is not None:
            attendance_kwargs["clock"] = self._clock
        return {
            Category.STAFF_CHAT: StaffChatStore(current_staff_id=self.staff_id, dedup=dedup()),
            Category.GUEST_CHAT: GuestChatStore(dedup=dedup()),
            Category.ATTENDANCE: AttendanceStore(**attendance_kwargs),
            Category.ROOM_SERVICE: RoomServiceStore(dedup=dedup()),
            Category.BOOKING: ServiceBookingStore(today=self._today, dedup=dedup()),
            Category.ROOM_BOOKING: RoomBookingStore(dedup=dedup()),
        }

    def start(self) -> None:
        """Create the stores and, when a transport is attached, open the base channels."""
        if self._started:
            return
        self._stores = self._build_stores()
        self._notifications = NotificationFeed(self._notification_limit)
        self._router = EventRouter(self._stores, self._notifications)
        if self.transport is not None:
            self._registry = ChannelRegistry(self.transport, self._router.handle_raw)
            self._registry.subscribe_base_channels(self.hotel_slug, self.staff_id)
        self._started = True
        logger.info("Realtime hub started for %s", self.hotel_slug or "<no hotel>")

    def stop(self) -> None:
        """Unbind every channel, then tear the stores down. Safe to call twice."""
        if not self._started:
            return
        if self._registry is not None:
            self._registry.close()
        for store in self._stores.values():
            store.close()
        if self._notifications is not None:
            self._notifications.close()
        self._stores = {}
        self._notifications = None
        self._router = None
        self._registry = None
        self._started = False
        logger.info("Realtime hub stopped")

    async def aclose(self) -> None:
        self.stop()
        if self.transport is not None and hasattr(self.transport, "disconnect"):
            await self.transport.disconnect()
        if self.http is not None:
            await self.http.close()

    async def __aenter__(self) -> "RealtimeHub":
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    # -- accessors --------------------------------------------------------------

    def _require_started(self, what: str) -> None:
        if not self._started:
            raise ProviderError(f"{what} used outside a started RealtimeHub")

    def store(self, category: Union[Category, str]) -> DomainStore:
        self._require_started("store()")
        try:
            return self._stores[Category(category)]
        except (KeyError, ValueError):
            raise ProviderError(f"No store for category {category!r}")

    def use_state(self, category: Union[Category, str]) -> Any:
        return self.store(category).state

    def use_dispatch(self, category: Union[Category, str]) -> Callable[[Action], None]:
        return self.store(category).dispatch

    @property
    def notifications(self) -> NotificationFeed:
        self._require_started("notifications")
        return self._notifications  # type: ignore[return-value]

    @property
    def router(self) -> EventRouter:
        self._require_started("router")
        return self._router  # type: ignore[return-value]

    @property
    def channels(self) -> Optional[ChannelRegistry]:
        return self._registry

    # -- realtime entry points --------------------------------------------------

    def handle_raw(self, raw: Union[RawEvent, dict[str, Any]]) -> Optional[Envelope]:
        return self.router.handle_raw(raw)

    def handle_event(self, envelope: Envelope) -> bool:
        return self.router.route(envelope)

    def subscribe_to_conversation(self, conversation_id: Any) -> Callable[[], None]:
        self._require_started("subscribe_to_conversation()")
        if self._registry is None:
            raise ProviderError("No transport attached to this hub")
        return self._registry.subscribe_to_conversation(self.hotel_slug, conversation_id)

    def subscribe_to_guest_chat(self, room_pin: Any) -> Callable[[], None]:
        self._require_started("subscribe_to_guest_chat()")
        if self._registry is None:
            raise ProviderError("No transport attached to this hub")
        return self._registry.subscribe_to_guest_chat(self.hotel_slug, room_pin)

    def subscription_status(self) -> dict[str, Any]:
        if self._registry is None:
            return {"active": False, "channel_count": 0, "channels": []}
        return self._registry.subscription_status()

    def connection_status(self) -> dict[str, Any]:
        """Connection flag for UI indicators: transport state plus per-channel subscription errors."""
        return {
            "state": self.transport.state.value if self.transport is not None else None,
            "errors": dict(self._registry.errors) if self._registry is not None else {},
        }

    # -- REST-backed operations -------------------------------------------------

    def _hotel_api(self) -> HotelAPI:
        if self.http is None or not self.hotel_slug:
            raise ProviderError("REST client and hotel slug are required")
        return HotelAPI(self.http, self.hotel_slug)

    async def bootstrap(self, api: Optional[HotelAPI] = None) -> dict[str, int]:
        """Bulk-load every domain through the REST layer. A failing resource leaves its store empty."""
        self._require_started("bootstrap()")
        api = api or self._hotel_api()
        loaders = {
            "staff_conversations": api.staff_conversations(),
            "guest_conversations": api.guest_conversations(),
            "orders": api.room_service_orders(),
            "service_bookings": api.service_bookings(),
            "room_bookings": api.room_bookings(),
            "staff": api.staff(),
        }
        results = await asyncio.gather(*loaders.values(), return_exceptions=True)
        if not self._started:
            return {}

        loaded: dict[str, list[dict[str, Any]]] = {}
        for name, result in zip(loaders, results):
            if isinstance(result, (ApiError, httpx.HTTPError)):
                logger.error("Bootstrap of %s failed: %s", name, result)
                continue
            if isinstance(result, BaseException):
                raise result
            loaded[name] = result

        stores = self._stores
        if "staff_conversations" in loaded:
            stores[Category.STAFF_CHAT].init_conversations(loaded["staff_conversations"])
        if "guest_conversations" in loaded:
            stores[Category.GUEST_CHAT].init_conversations(loaded["guest_conversations"])
        if "orders" in loaded:
            stores[Category.ROOM_SERVICE].init_from_api(loaded["orders"])
        if "service_bookings" in loaded:
            stores[Category.BOOKING].init_from_api(loaded["service_bookings"])
        if "room_bookings" in loaded:
            stores[Category.ROOM_BOOKING].init_from_api(loaded["room_bookings"])
        if "staff" in loaded:
            stores[Category.ATTENDANCE].init_from_api(loaded["staff"])
        return {name: len(items) for name, items in loaded.items()}

    async def mark_conversation_read(
        self,
        conversation_id: Any,
        conversation_type: str = "guest",
        is_window_active: bool = True,
        api: Optional[HotelAPI] = None,
    ) -> bool:
        """POST the read marker, then reset the local unread counter. Returns False when skipped."""
        self._require_started("mark_conversation_read()")
        if not conversation_id:
            logger.warning("mark_conversation_read called without a conversation id")
            return False
        if not is_window_active:
            logger.debug("Window not active, skipping mark read for %s", conversation_id)
            return False
        api = api or self._hotel_api()
        try:
            await api.mark_conversation_read(conversation_id, conversation_type)
        except (ApiError, httpx.HTTPError) as e:
            logger.error("Marking conversation %s read failed: %s", conversation_id, e)
            return False
        if not self._started:
            return False
        if conversation_type == "staff":
            self._stores[Category.STAFF_CHAT].mark_conversation_read(conversation_id)
        else:
            self._stores[Category.GUEST_CHAT].mark_read_for_staff(conversation_id)
        return True

    def guest_session(self, api: GuestChatAPI) -> GuestChatSession:
        """A guest chat session wired to this hub's transport and guest chat store."""
        self._require_started("guest_session()")
        if self.transport is None:
            raise ProviderError("No transport attached to this hub")
        return GuestChatSession(
            api, self.transport, store=self._stores[Category.GUEST_CHAT], page_size=self._guest_page_size,
        )
