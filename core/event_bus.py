"""
Event bus for billing domain events.

Synchronous in-process pub/sub. Handlers run in the publisher's thread,
after the store write has committed. Handler failures are logged and
swallowed: a failed notification never undoes a state transition.
"""

import logging
from typing import Callable, Dict, List, Type

from core.events import PortalEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[PortalEvent], None]


class EventBus:
    """
    In-process event bus.

    Subscribe by event class or class name. A subscriber to a base class
    (e.g. InvoiceEvent) receives every subclass event too.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[EventHandler]] = {}

    def subscribe(self, event_type: str | Type[PortalEvent], callback: EventHandler) -> None:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Event class, or its name (e.g. 'InvoiceSent')
            callback: Function to call with the published event
        """
        name = event_type if isinstance(event_type, str) else event_type.__name__
        self._subscribers.setdefault(name, []).append(callback)

    def unsubscribe(self, event_type: str | Type[PortalEvent], callback: EventHandler) -> None:
        name = event_type if isinstance(event_type, str) else event_type.__name__
        handlers = self._subscribers.get(name, [])
        if callback in handlers:
            handlers.remove(callback)

    def handlers_for(self, event: PortalEvent) -> List[EventHandler]:
        """Handlers registered for the event's class and its PortalEvent ancestors, most specific first."""
        handlers: List[EventHandler] = []
        for klass in type(event).__mro__:
            if not (isinstance(klass, type) and issubclass(klass, PortalEvent)):
                continue
            handlers.extend(self._subscribers.get(klass.__name__, []))
        return handlers

    def publish(self, event: PortalEvent) -> int:
        """
        Publish an event to all matching subscribers.

        Returns:
            Number of handlers that completed without raising.
        """
        event_type = type(event).__name__
        delivered = 0

        for callback in self.handlers_for(event):
            try:
                callback(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    event.event_id,
                )

        return delivered
