"""Customer change events and the in-process listener bus.

Provides the event model (CustomerSyncEvent) emitted by CustomerService after
each successful mutation, and CustomerEventBus which delivers events
synchronously, in registration order, to listeners keyed by event type.
Listeners registered under ``"*"`` receive every event.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field

from src.chargecrm.customers.schemas import CustomerSource, utc_now

logger = structlog.get_logger(__name__)

WILDCARD = "*"


class CustomerEventType(str, Enum):
    """Kinds of customer changes announced to listeners."""

    CUSTOMER_CREATED = "customer.created"
    CUSTOMER_UPDATED = "customer.updated"
    CUSTOMER_DELETED = "customer.deleted"
    DEAL_CREATED = "deal.created"
    DEAL_UPDATED = "deal.updated"
    CONTACT_ADDED = "contact.added"
    SYNC_COMPLETED = "sync.completed"


class CustomerSyncEvent(BaseModel):
    """A change notification.

    Attributes:
        type: What happened.
        customer_id: Affected customer, empty for config/sync events.
        data: The created/updated record, the sync result, or a small marker dict.
        timestamp: UTC emission time.
        source: Provider that handled the operation.
    """

    type: CustomerEventType
    customer_id: str = ""
    data: Any = None
    timestamp: datetime = Field(default_factory=utc_now)
    source: CustomerSource


EventListener = Callable[[CustomerSyncEvent], Any]


class CustomerEventBus:
    """Synchronous publish/subscribe for CustomerSyncEvent.

    A listener that raises is logged and skipped; remaining listeners and
    the operation that emitted the event are unaffected.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[EventListener]] = defaultdict(list)

    @staticmethod
    def _key(event_type: CustomerEventType | str) -> str:
        return event_type.value if isinstance(event_type, CustomerEventType) else str(event_type)

    def add_listener(self, event_type: CustomerEventType | str, listener: EventListener) -> None:
        self._listeners[self._key(event_type)].append(listener)

    def remove_listener(self, event_type: CustomerEventType | str, listener: EventListener) -> None:
        """Remove one registration of ``listener``; unknown listeners are ignored."""
        listeners = self._listeners.get(self._key(event_type))
        if listeners and listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event_type: CustomerEventType | str) -> int:
        return len(self._listeners.get(self._key(event_type), []))

    def emit(self, event: CustomerSyncEvent) -> None:
        # Copy so listeners can unsubscribe while being notified
        targets = [
            *self._listeners.get(event.type.value, []),
            *self._listeners.get(WILDCARD, []),
        ]
        for listener in targets:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "customer_events.listener_failed",
                    event_type=event.type.value,
                    customer_id=event.customer_id,
                )
