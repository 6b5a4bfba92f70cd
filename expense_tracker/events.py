"""Session-scoped event bus used for cross-component change notifications."""
from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    CURRENCY_CHANGED = "currency_changed"
    RATES_UPDATED = "rates_updated"
    RATES_FAILED = "rates_failed"
    EXPENSES_CHANGED = "expenses_changed"


class Event(NamedTuple):
    type: EventType
    ts: str
    payload: dict


Handler = Callable[[Event], Any]


class EventBus:
    """Deliver events to handlers registered for a given :class:`EventType`.

    One bus is created per application session and handed to the services
    that publish or consume events.  A failing handler is logged and does not
    prevent delivery to the remaining ones.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[EventType, List[Handler]] = {}

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        self._subscribers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: EventType, handler: Handler) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event_type: EventType, payload: dict | None = None) -> List[Any]:
        handlers = list(self._subscribers.get(event_type, []))
        if not handlers:
            return []

        event = Event(type=event_type, ts=datetime.now().isoformat(), payload=payload or {})
        results = []
        for handler in handlers:
            try:
                results.append(handler(event))
            except Exception:
                logger.exception("Handler %r failed for %s", handler, event_type.value)
        return results
