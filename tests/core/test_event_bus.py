"""Tests for EventBus."""

import logging

import pytest

from core.event_bus import EventBus
from core.events import InvoicePaid, InvoiceStatusChanged


@pytest.fixture
def bus():
    return EventBus()


# =============================================================================
# SUBSCRIBE AND PUBLISH
# =============================================================================


class TestSubscribeAndPublish:

    def test_subscriber_receives_event(self, bus, draft_invoice):
        received = []
        bus.subscribe("InvoiceStatusChanged", received.append)

        event = InvoiceStatusChanged.create(draft_invoice)
        bus.publish(event)

        assert received == [event]

    def test_only_matching_type_delivered(self, bus, draft_invoice):
        received = []
        bus.subscribe("InvoicePaid", received.append)

        bus.publish(InvoiceStatusChanged.create(draft_invoice))

        assert received == []

    def test_handlers_called_in_subscription_order(self, bus, draft_invoice):
        calls = []
        bus.subscribe("InvoiceStatusChanged", lambda e: calls.append("first"))
        bus.subscribe("InvoiceStatusChanged", lambda e: calls.append("second"))

        bus.publish(InvoiceStatusChanged.create(draft_invoice))

        assert calls == ["first", "second"]

    def test_publish_without_subscribers_is_noop(self, bus, draft_invoice):
        bus.publish(InvoicePaid.create(draft_invoice, payment=None))


# =============================================================================
# UNSUBSCRIBE
# =============================================================================


class TestUnsubscribe:

    def test_returned_callable_removes_subscription(self, bus, draft_invoice):
        received = []
        unsubscribe = bus.subscribe("InvoiceStatusChanged", received.append)

        unsubscribe()
        bus.publish(InvoiceStatusChanged.create(draft_invoice))

        assert received == []

    def test_unsubscribe_by_callback(self, bus, draft_invoice):
        received = []
        bus.subscribe("InvoiceStatusChanged", received.append)

        bus.unsubscribe("InvoiceStatusChanged", received.append)
        bus.publish(InvoiceStatusChanged.create(draft_invoice))

        assert received == []

    def test_unknown_subscription_ignored(self, bus):
        bus.unsubscribe("InvoicePaid", print)

    def test_handler_may_unsubscribe_itself_during_publish(self, bus, draft_invoice):
        calls = []

        def once(event):
            calls.append(event)
            unsubscribe()

        unsubscribe = bus.subscribe("InvoiceStatusChanged", once)
        bus.subscribe("InvoiceStatusChanged", lambda e: calls.append("other"))

        bus.publish(InvoiceStatusChanged.create(draft_invoice))
        bus.publish(InvoiceStatusChanged.create(draft_invoice))

        assert len([c for c in calls if c != "other"]) == 1
        assert calls.count("other") == 2


# =============================================================================
# ERROR ISOLATION
# =============================================================================


class TestErrorIsolation:

    def test_failing_handler_does_not_raise(self, bus, draft_invoice, caplog):
        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe("InvoiceStatusChanged", broken)

        with caplog.at_level(logging.ERROR, logger="core.event_bus"):
            bus.publish(InvoiceStatusChanged.create(draft_invoice))

        assert "broken" in caplog.text

    def test_failing_handler_does_not_block_others(self, bus, draft_invoice):
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe("InvoiceStatusChanged", broken)
        bus.subscribe("InvoiceStatusChanged", received.append)

        bus.publish(InvoiceStatusChanged.create(draft_invoice))

        assert len(received) == 1
