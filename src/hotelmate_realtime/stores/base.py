"""
DomainStore — a single mutable unit owned by one reducer.

All mutation goes through dispatch(Action). Realtime envelopes enter through
handle_event(), which validates, deduplicates, then translates the event into
one or more actions. After close() the store drops every dispatch so late
REST results cannot write into a torn-down store.
"""

import logging
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from pydantic import BaseModel

from hotelmate_realtime.dedup import EventDeduplicator, WindowedDeduplicator
from hotelmate_realtime.models.envelope import Category, Envelope
from hotelmate_realtime.models.state import Action, coerce_id

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=BaseModel)

Reducer = Callable[[Any, dict[str, Any]], Any]
EventHandler = Callable[[Envelope, Any], None]
Listener = Callable[[Any], None]


class DomainStore(Generic[S]):
    category: Category
    state_class: type

    def __init__(self, dedup: Optional[Union[EventDeduplicator, WindowedDeduplicator]] = None):
        self._state: S = self.state_class()
        self._listeners: list[Listener] = []
        self._dedup = dedup or EventDeduplicator()
        self._mounted = True
        self._reducers: dict[str, Reducer] = self.reducers()
        self._events: dict[str, EventHandler] = self.event_handlers()

    # -- to be provided by each domain --------------------------------------

    def reducers(self) -> dict[str, Reducer]:
        raise NotImplementedError

    def event_handlers(self) -> dict[str, EventHandler]:
        raise NotImplementedError

    def event_key(self, event_type: str) -> str:
        """Hook for stores that accept more than one naming convention."""
        return event_type

    # -- state ----------------------------------------------------------------

    @property
    def name(self) -> str:
        return self.category.value

    @property
    def mounted(self) -> bool:
        return self._mounted

    @property
    def state(self) -> S:
        return self._state

    def get_state(self) -> S:
        return self._state

    def reduce(self, state: S, action: Action) -> S:
        reducer = self._reducers.get(action.type)
        if reducer is None:
            logger.warning("[%s] Unknown action type: %s", self.name, action.type)
            return state
        return reducer(state, action.payload)

    def dispatch(self, action: Action) -> None:
        if not self._mounted:
            logger.debug("[%s] Store closed, dropping %r", self.name, action)
            return
        new_state = self.reduce(self._state, action)
        if new_state is self._state:
            return
        self._state = new_state
        for listener in list(self._listeners):
            listener(new_state)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a state listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return remove

    # -- realtime entry point -------------------------------------------------

    def handle_event(self, envelope: Envelope) -> bool:
        """Apply one routed envelope. Returns True if it reached a handler."""
        if not self._mounted:
            logger.debug("[%s] Store closed, dropping %s event", self.name, envelope.type)
            return False
        if envelope.category != self.category:
            logger.warning("[%s] Misrouted %s event: %s", self.name, envelope.category.value, envelope.type)
            return False

        entity_id = envelope.entity_id
        if entity_id is None:
            logger.warning("[%s] Event %s has no resolvable entity id, dropped", self.name, envelope.type)
            return False

        if not self._dedup.should_process(self.category, envelope):
            return False

        handler = self._events.get(self.event_key(envelope.type))
        if handler is None:
            logger.info("[%s] Unknown event type ignored: %s", self.name, envelope.type)
            return False

        logger.debug("[%s] Handling %s for %s", self.name, envelope.type, entity_id)
        handler(envelope, coerce_id(entity_id))
        return True

    def close(self) -> None:
        self._mounted = False
        self._listeners.clear()
        self._dedup.clear()
        self._state = self.state_class()
