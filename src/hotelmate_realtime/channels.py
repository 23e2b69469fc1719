"""
Channel subscription manager.

Base channels (hotel-wide plus the personal staff channel) are opened once;
a second subscribe_base_channels() while active is a no-op. Conversation
channels are reference counted per channel name so independent views can
open and close them freely. Every cleanup unbinds listeners before the
transport unsubscribe.
"""

import logging
from typing import Any, Callable, Optional

from hotelmate_realtime.models.envelope import ChannelDelivery
from hotelmate_realtime.transport.base import SUBSCRIPTION_ERROR, SUBSCRIPTION_SUCCEEDED, Channel, Transport

logger = logging.getLogger(__name__)

Cleanup = Callable[[], None]
RawHandler = Callable[[ChannelDelivery], Any]

BASE_DOMAINS = ("attendance", "room-service", "booking", "room-bookings")
DEFAULT_GUEST_EVENT = "realtime_event"


def _noop() -> None:
    return None


def hotel_channel(hotel_slug: str, domain: str) -> str:
    return f"{hotel_slug}.{domain}"


def personal_channel(hotel_slug: str, staff_id: Any) -> str:
    return f"{hotel_slug}.staff-{staff_id}-notifications"


def staff_chat_channel(hotel_slug: str, conversation_id: Any) -> str:
    return f"{hotel_slug}.staff-chat.{conversation_id}"


def guest_chat_channel(hotel_slug: str, room_pin: Any) -> str:
    return f"hotel-{hotel_slug}.guest-chat.{room_pin}"


def guest_booking_channel(hotel_slug: str, booking_id: Any) -> str:
    return f"private-hotel-{hotel_slug}-guest-chat-booking-{booking_id}"


def base_channel_names(hotel_slug: str, staff_id: Optional[Any] = None) -> list[str]:
    names = [hotel_channel(hotel_slug, domain) for domain in BASE_DOMAINS]
    if staff_id:
        names.append(personal_channel(hotel_slug, staff_id))
    return names


class ChannelRegistry:
    def __init__(self, transport: Transport, on_event: RawHandler):
        self._transport = transport
        self._on_event = on_event
        self._base: list[Channel] = []
        self._base_active = False
        self._dynamic: dict[str, int] = {}
        self._dynamic_channels: dict[str, Channel] = {}
        self._guest: dict[str, Cleanup] = {}
        self.errors: dict[str, str] = {}

    # -- state ----------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._base_active

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def channel_names(self) -> list[str]:
        names = [c.name for c in self._base]
        names.extend(n for n in self._dynamic if n not in names)
        return names

    def subscription_status(self) -> dict[str, Any]:
        names = self.channel_names()
        return {"active": self._base_active, "channel_count": len(names), "channels": names}

    # -- plumbing ---------------------------------------------------------------

    def _forward(self, channel_name: str, event_name: str, data: Any) -> None:
        self._on_event(ChannelDelivery(channel=channel_name, event_name=event_name, payload=data))

    def _open(self, channel_name: str) -> Channel:
        channel = self._transport.subscribe(channel_name)

        def on_error(error: Any) -> None:
            logger.error("Subscription error on %s: %s", channel_name, error)
            self.errors[channel_name] = str(error)

        def on_succeeded(_data: Any) -> None:
            self.errors.pop(channel_name, None)
            logger.debug("Subscribed to %s", channel_name)

        channel.bind(SUBSCRIPTION_ERROR, on_error)
        channel.bind(SUBSCRIPTION_SUCCEEDED, on_succeeded)
        channel.bind_global(lambda event_name, data: self._forward(channel_name, event_name, data))
        return channel

    def _close(self, channel: Channel) -> None:
        try:
            channel.unbind_all()
            self._transport.unsubscribe(channel.name)
        except Exception as e:
            logger.error("Error unsubscribing from %s: %s", channel.name, e)
        self.errors.pop(channel.name, None)

    # -- base channels ----------------------------------------------------------

    def subscribe_base_channels(self, hotel_slug: Optional[str], staff_id: Optional[Any] = None) -> Cleanup:
        if self._base_active:
            logger.warning("Base channels already subscribed, skipping duplicate subscription")
            return _noop
        if not hotel_slug:
            logger.warning("No hotel slug provided, skipping channel subscriptions")
            return _noop

        opened: list[Channel] = []
        try:
            for name in base_channel_names(hotel_slug, staff_id):
                opened.append(self._open(name))
        except Exception as e:
            logger.error("Error subscribing to base channels for %s: %s", hotel_slug, e)
            self.errors[hotel_slug] = str(e)
            for channel in opened:
                self._close(channel)
            return _noop

        self._base = opened
        self._base_active = True
        logger.info("Subscribed to %d base channels for %s", len(opened), hotel_slug)

        def cleanup() -> None:
            if self._base is not opened:
                return
            for channel in opened:
                self._close(channel)
            self._base = []
            self._base_active = False

        return cleanup

    # -- conversation channels --------------------------------------------------

    def _subscribe_dynamic(self, channel_name: str) -> Cleanup:
        count = self._dynamic.get(channel_name, 0)
        if count == 0:
            try:
                self._dynamic_channels[channel_name] = self._open(channel_name)
            except Exception as e:
                logger.error("Error subscribing to %s: %s", channel_name, e)
                self.errors[channel_name] = str(e)
                return _noop
        self._dynamic[channel_name] = count + 1
        released = False

        def cleanup() -> None:
            nonlocal released
            if released:
                return
            released = True
            remaining = self._dynamic.get(channel_name, 0) - 1
            if remaining > 0:
                self._dynamic[channel_name] = remaining
                return
            self._dynamic.pop(channel_name, None)
            channel = self._dynamic_channels.pop(channel_name, None)
            if channel is not None:
                self._close(channel)

        return cleanup

    def subscribe_to_conversation(self, hotel_slug: Optional[str], conversation_id: Any) -> Cleanup:
        if not hotel_slug or not conversation_id:
            logger.warning("Missing hotel slug or conversation id for staff chat subscription")
            return _noop
        return self._subscribe_dynamic(staff_chat_channel(hotel_slug, conversation_id))

    def subscribe_to_guest_chat(self, hotel_slug: Optional[str], room_pin: Any) -> Cleanup:
        if not hotel_slug or not room_pin:
            logger.warning("Missing hotel slug or room pin for guest chat subscription")
            return _noop
        return self._subscribe_dynamic(guest_chat_channel(hotel_slug, room_pin))

    def subscribe_to_guest_chat_booking(
        self,
        hotel_slug: Optional[str],
        booking_id: Any,
        guest_token: Optional[str],
        event_name: str = DEFAULT_GUEST_EVENT,
    ) -> Cleanup:
        """Guest-side booking channel. A repeat call for the same token returns the existing cleanup."""
        if not hotel_slug or not booking_id or not guest_token:
            logger.warning("Missing parameters for guest chat booking subscription")
            return _noop
        channel_name = guest_booking_channel(hotel_slug, booking_id)
        key = f"{guest_token}:{channel_name}"
        if key in self._guest:
            logger.debug("Already subscribed to %s, returning existing cleanup", channel_name)
            return self._guest[key]

        try:
            channel = self._transport.subscribe(channel_name)
        except Exception as e:
            logger.error("Error subscribing to %s: %s", channel_name, e)
            self.errors[channel_name] = str(e)
            return _noop

        def on_event(data: Any) -> None:
            self._forward(channel_name, event_name, data)

        def on_error(error: Any) -> None:
            logger.error("Subscription error on %s: %s", channel_name, error)
            self.errors[channel_name] = str(error)
            self._guest.pop(key, None)

        channel.bind(event_name, on_event)
        channel.bind(SUBSCRIPTION_ERROR, on_error)

        def cleanup() -> None:
            if self._guest.get(key) is not cleanup:
                return
            self._close(channel)
            self._guest.pop(key, None)

        self._guest[key] = cleanup
        return cleanup

    # -- teardown ---------------------------------------------------------------

    def close(self) -> None:
        """Unbind and unsubscribe everything this registry opened."""
        for channel in self._base:
            self._close(channel)
        self._base = []
        self._base_active = False
        for channel in list(self._dynamic_channels.values()):
            self._close(channel)
        self._dynamic_channels.clear()
        self._dynamic.clear()
        for cleanup in list(self._guest.values()):
            cleanup()
        self._guest.clear()
