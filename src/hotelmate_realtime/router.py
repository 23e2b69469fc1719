"""
Event router — one normalized envelope to exactly one domain store.

The router is the pipeline boundary: nothing raised by normalization or a
store escapes it. Stores are handed in at construction by the composition
root (see hub.RealtimeHub).
"""

import logging
from typing import Any, Callable, Mapping, Optional, Union

from hotelmate_realtime.models.envelope import Category, Envelope, RawEvent
from hotelmate_realtime.normalizer import normalize
from hotelmate_realtime.stores.base import DomainStore
from hotelmate_realtime.stores.notifications import NotificationFeed

logger = logging.getLogger(__name__)


class EventRouter:
    def __init__(
        self,
        stores: Mapping[Category, DomainStore],
        notifications: Optional[NotificationFeed] = None,
    ):
        self._stores = dict(stores)
        self._notifications = notifications
        self._observers: list[Callable[[Envelope], None]] = []

    @property
    def stores(self) -> dict[Category, DomainStore]:
        return dict(self._stores)

    def add_observer(self, observer: Callable[[Envelope], None]) -> Callable[[], None]:
        """Call `observer` with every envelope a store handled. Returns a cleanup function."""
        self._observers.append(observer)

        def remove() -> None:
            try:
                self._observers.remove(observer)
            except ValueError:
                pass

        return remove

    def route(self, envelope: Envelope) -> bool:
        """Deliver to the owning store. Returns True if a store handled it."""
        store = self._stores.get(envelope.category)
        if store is None:
            logger.debug("No store mounted for %s, dropping %s", envelope.category.value, envelope.type)
            return False
        try:
            handled = store.handle_event(envelope)
        except Exception:
            logger.exception("[%s] Store failed on %s", envelope.category.value, envelope.type)
            return False
        if not handled:
            return False
        if self._notifications is not None:
            try:
                self._notifications.maybe_add(envelope)
            except Exception:
                logger.exception("Notification side-channel failed on %s", envelope.type)
        for observer in list(self._observers):
            try:
                observer(envelope)
            except Exception:
                logger.exception("Router observer failed on %s", envelope.type)
        return True

    def handle_raw(self, raw: Union[RawEvent, dict[str, Any]]) -> Optional[Envelope]:
        """Normalize and route one raw transport event. Returns the envelope when routed."""
        try:
            envelope = normalize(raw)
        except Exception:
            logger.exception("Normalization failed for raw event")
            return None
        if envelope is None:
            return None
        return envelope if self.route(envelope) else None
