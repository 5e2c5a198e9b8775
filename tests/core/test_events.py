"""Tests for invoicing domain events."""

from dataclasses import FrozenInstanceError

import pytest

from core.events import InvoicePaid, InvoiceStatusChanged


class TestInvoiceStatusChanged:

    def test_carries_invoice_and_statuses(self, sent_invoice):
        event = InvoiceStatusChanged.create(sent_invoice, previous_status="draft")

        assert event.invoice_id == sent_invoice.id
        assert event.previous_status == "draft"
        assert event.new_status == "sent"

    def test_creation_has_no_previous_status(self, draft_invoice):
        event = InvoiceStatusChanged.create(draft_invoice)

        assert event.previous_status is None
        assert event.new_status == "draft"

    def test_events_get_unique_ids_and_timestamp(self, draft_invoice):
        a = InvoiceStatusChanged.create(draft_invoice)
        b = InvoiceStatusChanged.create(draft_invoice)

        assert a.event_id != b.event_id
        assert a.occurred_at.tzinfo is not None

    def test_immutable(self, draft_invoice):
        event = InvoiceStatusChanged.create(draft_invoice)

        with pytest.raises(FrozenInstanceError):
            event.previous_status = "sent"


class TestInvoicePaid:

    def test_carries_payment(self, draft_invoice):
        payment = object()
        event = InvoicePaid.create(draft_invoice, payment)

        assert event.payment is payment
        assert event.invoice_id == draft_invoice.id
