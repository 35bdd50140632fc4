"""
Domain Events
=============

Publish/subscribe surface for persisted-state changes. Consumers (undo/redo,
tree refresh) subscribe once on the database manager's bus and never poll.

The bus is an explicit object injected into every repository; there is no
process-wide emitter.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from models.common import EventType, RecordSource
from utils.timestamps import now_iso

logger = logging.getLogger(__name__)

# Subscribing to this receives every event
ALL_EVENTS = '*'


@dataclass
class DomainEvent:
    """One persisted-state change."""
    type: EventType
    record: Any = None
    delta: Optional[Dict[str, Any]] = None
    source: Optional[RecordSource] = None
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'record': self.record,
            'delta': self.delta,
            'source': self.source.value if self.source else None,
            'timestamp': self.timestamp,
        }


Handler = Callable[[DomainEvent], Any]


class EventBus:
    """
    Synchronous fan-out of domain events.

    Handler exceptions are logged and dropped, so a faulty consumer never
    breaks the repository call that published the event.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}

    @staticmethod
    def _key(event_type: Union[EventType, str]) -> str:
        return event_type.value if isinstance(event_type, EventType) else str(event_type)

    def subscribe(self, event_type: Union[EventType, str], handler: Handler) -> Callable[[], None]:
        """Register handler; returns a callable that unsubscribes it."""
        self._handlers.setdefault(self._key(event_type), []).append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: Union[EventType, str], handler: Handler) -> bool:
        handlers = self._handlers.get(self._key(event_type), [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def publish(self, event: DomainEvent) -> int:
        """Deliver event to its subscribers; returns how many handlers ran cleanly."""
        handlers = list(self._handlers.get(event.type.value, []))
        handlers.extend(self._handlers.get(ALL_EVENTS, []))
        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception as e:  # pylint: disable=broad-except
                logger.error("[EventBus] Handler %r failed for %s: %s",
                             handler, event.type.value, e, exc_info=True)
        return delivered

    def emit(self, event_type: EventType, record: Any = None,
             delta: Optional[Dict[str, Any]] = None,
             source: Optional[RecordSource] = None) -> int:
        """Shorthand for publish(DomainEvent(...))."""
        return self.publish(DomainEvent(event_type, record, delta, source))

    def handler_count(self, event_type: Union[EventType, str, None] = None) -> int:
        if event_type is None:
            return sum(len(handlers) for handlers in self._handlers.values())
        return len(self._handlers.get(self._key(event_type), []))
