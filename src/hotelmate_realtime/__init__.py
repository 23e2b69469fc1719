"""
hotelmate-realtime — realtime event routing and domain stores for HotelMate.

Normalizes pub/sub and push deliveries into one envelope, deduplicates
at-least-once delivery and reconciles per-domain state.
"""

from hotelmate_realtime.hub import RealtimeHub
from hotelmate_realtime.config import Settings, load_settings, save_settings
from hotelmate_realtime.normalizer import normalize
from hotelmate_realtime.router import EventRouter
from hotelmate_realtime.channels import ChannelRegistry
from hotelmate_realtime.guest_chat import GuestChatSession
from hotelmate_realtime.api import GuestChatAPI, HotelAPI
from hotelmate_realtime.errors import (
    HotelMateError,
    ProviderError,
    TransportError,
    ApiError,
    SendError,
    CursorError,
)
from hotelmate_realtime.models.envelope import Category, Envelope, EventMeta, PushNotification, ChannelDelivery
from hotelmate_realtime.models.state import Action

__version__ = "0.1.0"
__all__ = [
    "RealtimeHub",
    "Settings",
    "load_settings",
    "save_settings",
    "normalize",
    "EventRouter",
    "ChannelRegistry",
    "GuestChatSession",
    "GuestChatAPI",
    "HotelAPI",
    "HotelMateError",
    "ProviderError",
    "TransportError",
    "ApiError",
    "SendError",
    "CursorError",
    "Category",
    "Envelope",
    "EventMeta",
    "PushNotification",
    "ChannelDelivery",
    "Action",
]
