"""Cart lifecycle notifications.

Operations announce themselves through a NotificationPort. A handler that
returns False for a cancelable event vetoes the operation before anything
is changed.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from pricecart.logging import get_logger

logger = get_logger(__name__)


class CartEventType(str, Enum):
    """Lifecycle events emitted by CartOperations and MergeCoordinator."""
    ITEM_ADDING = "item_adding"
    ITEM_ADDED = "item_added"
    ITEM_UPDATING = "item_updating"
    ITEM_UPDATED = "item_updated"
    ITEM_REMOVING = "item_removing"
    ITEM_REMOVED = "item_removed"
    CLEARING = "clearing"
    CLEARED = "cleared"
    CONDITION_ADDED = "condition_added"
    CONDITION_REMOVED = "condition_removed"
    CONDITION_INVALIDATED = "condition_invalidated"
    MERGING = "merging"
    MERGED = "merged"


CANCELABLE_EVENTS = frozenset({
    CartEventType.ITEM_ADDING,
    CartEventType.ITEM_UPDATING,
    CartEventType.ITEM_REMOVING,
    CartEventType.CLEARING,
    CartEventType.MERGING,
})


@dataclass(frozen=True)
class CartEvent:
    """One notification."""
    type: CartEventType
    scope: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def cancelable(self) -> bool:
        return self.type in CANCELABLE_EVENTS


@runtime_checkable
class NotificationPort(Protocol):
    """Receives lifecycle events. False on a cancelable event aborts the operation."""

    def emit(self, event: CartEvent) -> bool:
        ...


class NullNotifier:
    """Accepts every event."""

    def emit(self, event: CartEvent) -> bool:
        return True


EventHandler = Callable[[CartEvent], Optional[bool]]


class EventDispatcher:
    """
    Routes events to handlers registered per event type.

    Handlers run in registration order. A handler returning False on a
    cancelable event stops dispatch and makes emit() return False. Return
    values of non-cancelable events are ignored.
    """

    def __init__(self) -> None:
        self._handlers: dict[CartEventType, list[EventHandler]] = {}

    def on(self, event_type: CartEventType | str, handler: EventHandler) -> "EventDispatcher":
        self._handlers.setdefault(CartEventType(event_type), []).append(handler)
        return self

    def off(self, event_type: CartEventType | str, handler: Optional[EventHandler] = None) -> None:
        event_type = CartEventType(event_type)
        if handler is None:
            self._handlers.pop(event_type, None)
            return
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def has_listeners(self, event_type: CartEventType | str) -> bool:
        return bool(self._handlers.get(CartEventType(event_type)))

    def emit(self, event: CartEvent) -> bool:
        for handler in list(self._handlers.get(event.type, [])):
            result = handler(event)
            if result is False and event.cancelable:
                logger.info(f"Cart event {event.type.value} cancelled for scope {event.scope}")
                return False
        return True
