"""
HotelMate realtime error types.

Only programmer errors (ProviderError, CursorError) and REST failures are raised.
Everything that arrives over the realtime transport fails open: logged, dropped.
"""

from typing import Any, Optional


class HotelMateError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class ProviderError(HotelMateError):
    """A store accessor was used outside a started hub."""

    def __init__(self, message: str):
        super().__init__("provider_error", message)


class TransportError(HotelMateError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("transport_error", message, details)


class ApiError(HotelMateError):
    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[dict[str, Any]] = None):
        super().__init__("api_error", message, details)
        self.status_code = status_code


class SendError(HotelMateError):
    def __init__(self, message: str, client_message_id: str):
        super().__init__("send_error", message, {"client_message_id": client_message_id})
        self.client_message_id = client_message_id


class CursorError(HotelMateError):
    """Pagination was requested from a message the server has not confirmed yet."""

    def __init__(self, cursor: str):
        super().__init__("cursor_error", f"Cursor {cursor!r} is a local id and cannot be paginated from")
        self.cursor = cursor
