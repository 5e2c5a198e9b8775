"""Tests for the compact document projection."""

from core.documents import invoice_document
from core.models import PaymentCreate


class TestInvoiceDocument:

    def test_amounts_are_two_decimal_strings(self, draft_invoice):
        doc = invoice_document(draft_invoice)

        assert doc["type"] == "invoice"
        assert doc["invoiceNumber"] == draft_invoice.invoice_number
        assert doc["subtotal"] == "399.00"
        assert doc["taxRate"] == "8"
        assert doc["taxAmount"] == "31.92"
        assert doc["totalAmount"] == "430.92"
        assert doc["status"] == "draft"

    def test_line_items(self, draft_invoice):
        doc = invoice_document(draft_invoice)

        assert doc["lineItems"] == [
            {"description": "Logo", "quantity": "1", "unitPrice": "299.00", "itemType": "design"},
            {"description": "Revision", "quantity": "2", "unitPrice": "50.00", "itemType": "service"},
        ]

    def test_payment_metadata_after_paid(self, invoice_service, sent_invoice, actor):
        invoice, _ = invoice_service.mark_paid(sent_invoice.id, PaymentCreate(
            amount_cents=43092, payment_method="paypal", transaction_id="CAP-1",
        ), actor)

        doc = invoice_document(invoice)

        assert doc["status"] == "paid"
        assert doc["paidAt"] == invoice.paid_at.isoformat()
        assert doc["paymentMethod"] == "paypal"
        assert doc["transactionId"] == "CAP-1"

    def test_unpaid_has_no_payment_fields(self, sent_invoice):
        doc = invoice_document(sent_invoice)

        assert doc["paidAt"] is None
        assert doc["transactionId"] is None
        assert doc["sentAt"] == sent_invoice.sent_at.isoformat()
