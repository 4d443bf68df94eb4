"""Unit tests for CustomerEventBus delivery, ordering and listener isolation."""

from __future__ import annotations

from unittest.mock import MagicMock

from src.chargecrm.customers.events import (
    CustomerEventBus,
    CustomerEventType,
    CustomerSyncEvent,
)
from src.chargecrm.customers.schemas import CustomerSource


def _event(event_type: CustomerEventType = CustomerEventType.CUSTOMER_CREATED) -> CustomerSyncEvent:
    return CustomerSyncEvent(type=event_type, customer_id="native_1_a", source=CustomerSource.NATIVE)


class TestCustomerEventBus:
    def test_delivers_in_registration_order(self):
        bus = CustomerEventBus()
        seen: list[str] = []
        bus.add_listener(CustomerEventType.CUSTOMER_CREATED, lambda e: seen.append("first"))
        bus.add_listener("customer.created", lambda e: seen.append("second"))

        bus.emit(_event())

        assert seen == ["first", "second"]

    def test_only_matching_type_is_notified(self):
        bus = CustomerEventBus()
        listener = MagicMock()
        bus.add_listener(CustomerEventType.DEAL_CREATED, listener)

        bus.emit(_event(CustomerEventType.CUSTOMER_CREATED))

        listener.assert_not_called()

    def test_wildcard_receives_every_event(self):
        bus = CustomerEventBus()
        listener = MagicMock()
        bus.add_listener("*", listener)

        bus.emit(_event(CustomerEventType.CUSTOMER_CREATED))
        bus.emit(_event(CustomerEventType.SYNC_COMPLETED))

        assert [c.args[0].type for c in listener.call_args_list] == [
            CustomerEventType.CUSTOMER_CREATED,
            CustomerEventType.SYNC_COMPLETED,
        ]

    def test_failing_listener_does_not_stop_others(self):
        bus = CustomerEventBus()
        failing = MagicMock(side_effect=RuntimeError("listener bug"))
        healthy = MagicMock()
        bus.add_listener(CustomerEventType.CUSTOMER_CREATED, failing)
        bus.add_listener(CustomerEventType.CUSTOMER_CREATED, healthy)

        event = _event()
        bus.emit(event)

        failing.assert_called_once_with(event)
        healthy.assert_called_once_with(event)

    def test_remove_listener(self):
        bus = CustomerEventBus()
        listener = MagicMock()
        bus.add_listener(CustomerEventType.CUSTOMER_CREATED, listener)
        bus.remove_listener(CustomerEventType.CUSTOMER_CREATED, listener)
        bus.remove_listener(CustomerEventType.CUSTOMER_CREATED, listener)
        bus.remove_listener("never.registered", listener)

        bus.emit(_event())

        listener.assert_not_called()
        assert bus.listener_count(CustomerEventType.CUSTOMER_CREATED) == 0

    def test_event_defaults(self):
        event = CustomerSyncEvent(type=CustomerEventType.SYNC_COMPLETED, source=CustomerSource.HUBSPOT)
        assert event.customer_id == ""
        assert event.data is None
        assert event.timestamp.tzinfo is not None
