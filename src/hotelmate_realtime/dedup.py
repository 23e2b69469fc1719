"""
Deduplication ledgers for at-least-once realtime delivery.

Key priority:
1. meta.event_id when the backend sends one, remembered in a bounded ledger
2. "{domain}:{type}:{entity_id}:{secondary}:{fingerprint}" where secondary is the
   message/order id, else meta.ts, and fingerprint hashes the payload. Composite
   keys only suppress redeliveries inside a short window: a message id names the
   subject of an event, not the event itself.
3. nothing: an event without any discriminator is never suppressed

Each store owns its own deduplicator; ledgers are never shared across domains.
"""

import asyncio
import hashlib
import json
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Optional

from hotelmate_realtime.models.envelope import Category, Envelope

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000
DEFAULT_WINDOW_S = 5.0
COMPOSITE_WINDOW_S = 3.0


class EventLedger:
    """Insertion-ordered set with a hard capacity. Oldest keys are evicted first."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._keys: "OrderedDict[str, None]" = OrderedDict()

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: str) -> bool:
        """Record key. Returns False if it was already present."""
        if key in self._keys:
            return False
        self._keys[key] = None
        while len(self._keys) > self._capacity:
            self._keys.popitem(last=False)
        return True

    def clear(self) -> None:
        self._keys.clear()


class TimeWindowLedger:
    """{key: timestamp} map. A key is suppressed for `window_s` after it was last accepted.

    Entries expire through loop.call_later when an event loop is running, and
    lazily on lookup otherwise.
    """

    def __init__(
        self,
        window_s: float = DEFAULT_WINDOW_S,
        clock: Callable[[], float] = time.monotonic,
        capacity: int = DEFAULT_CAPACITY,
    ):
        self._window_s = window_s
        self._clock = clock
        self._capacity = capacity
        self._seen: dict[str, float] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def __contains__(self, key: str) -> bool:
        stamp = self._seen.get(key)
        return stamp is not None and self._clock() - stamp < self._window_s

    def __len__(self) -> int:
        return len(self._seen)

    def add(self, key: str) -> bool:
        now = self._clock()
        stamp = self._seen.get(key)
        if stamp is not None and now - stamp < self._window_s:
            return False
        self._seen[key] = now
        self._schedule_expiry(key, now)
        if len(self._seen) > self._capacity:
            self._purge(now)
        return True

    def _schedule_expiry(self, key: str, stamp: float) -> None:
        old = self._timers.pop(key, None)
        if old:
            old.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timers[key] = loop.call_later(self._window_s, self._expire, key, stamp)

    def _expire(self, key: str, stamp: float) -> None:
        self._timers.pop(key, None)
        if self._seen.get(key) == stamp:
            del self._seen[key]

    def _purge(self, now: float) -> None:
        for key in [k for k, stamp in self._seen.items() if now - stamp >= self._window_s]:
            del self._seen[key]
            timer = self._timers.pop(key, None)
            if timer:
                timer.cancel()

    def clear(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._seen.clear()


def payload_fingerprint(payload: Any) -> str:
    blob = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha1(blob.encode()).hexdigest()[:12]


def composite_key(domain: Category, envelope: Envelope, entity_id: Any) -> Optional[str]:
    secondary = envelope.secondary_id
    # An order or booking payload's own id names the entity, not the event.
    if secondary is None or str(secondary) == str(entity_id):
        secondary = envelope.meta.ts
    if secondary is None:
        return None
    return f"{domain.value}:{envelope.type}:{entity_id}:{secondary}:{payload_fingerprint(envelope.payload)}"


class EventDeduplicator:
    """Deduplication used by every store except attendance.

    Event ids go into a bounded ledger for the life of the store. Composite
    keys are held for `window_s` only, so a second edit or a receipt from
    another reader on the same message is never lost.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        window_s: float = COMPOSITE_WINDOW_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ledger = EventLedger(capacity)
        self.recent = TimeWindowLedger(window_s, clock, capacity)

    def key_for(self, domain: Category, envelope: Envelope) -> Optional[str]:
        if envelope.meta.event_id:
            return envelope.meta.event_id
        return composite_key(domain, envelope, envelope.entity_id)

    def should_process(self, domain: Category, envelope: Envelope) -> bool:
        """True if the envelope is new. Marks it as processed as a side effect."""
        key = self.key_for(domain, envelope)
        if key is None:
            return True
        ledger = self.ledger if envelope.meta.event_id else self.recent
        if not ledger.add(key):
            logger.debug("Duplicate %s event skipped: %s", domain.value, key)
            return False
        return True

    def clear(self) -> None:
        self.ledger.clear()
        self.recent.clear()


class WindowedDeduplicator:
    """Attendance variant: the same type for the same staff member is suppressed
    for a short window instead of remembered forever."""

    def __init__(self, window_s: float = DEFAULT_WINDOW_S, clock: Callable[[], float] = time.monotonic):
        self.ledger = TimeWindowLedger(window_s, clock)

    def key_for(self, domain: Category, envelope: Envelope) -> str:
        if envelope.meta.event_id:
            return envelope.meta.event_id
        return f"{domain.value}:{envelope.type}:{envelope.entity_id or 'global'}"

    def should_process(self, domain: Category, envelope: Envelope) -> bool:
        key = self.key_for(domain, envelope)
        if not self.ledger.add(key):
            logger.debug("Suppressed %s event inside window: %s", domain.value, key)
            return False
        return True

    def clear(self) -> None:
        self.ledger.clear()
