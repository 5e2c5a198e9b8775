"""
Compact document form of an invoice.

A single JSON object carrying the header, computed totals, line items and
payment metadata, for consumers that store or render an invoice as one
blob. Always generated from the relational record on read; nothing ever
writes it back.
"""

from core.models import Invoice
from core.money import format_cents


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def invoice_document(invoice: Invoice) -> dict:
    """Render an invoice as its compact document. Amounts are 2-decimal strings."""
    payment = invoice.completed_payment()

    return {
        "type": "invoice",
        "id": str(invoice.id),
        "invoiceNumber": invoice.invoice_number,
        "title": invoice.title,
        "description": invoice.description,
        "clientId": str(invoice.client_id),
        "designerId": str(invoice.designer_id) if invoice.designer_id else None,
        "projectId": str(invoice.project_id) if invoice.project_id else None,
        "subtotal": format_cents(invoice.subtotal_cents),
        "taxRate": str(invoice.tax_rate),
        "taxAmount": format_cents(invoice.tax_amount_cents),
        "totalAmount": format_cents(invoice.total_amount_cents),
        "status": invoice.status.value,
        "dueDate": _iso(invoice.due_at),
        "sentAt": _iso(invoice.sent_at),
        "paidAt": _iso(invoice.paid_at),
        "paymentMethod": invoice.payment_method,
        "paypalOrderId": invoice.gateway_order_id,
        "transactionId": payment.transaction_id if payment else None,
        "notes": invoice.notes,
        "terms": invoice.terms,
        "lineItems": [
            {
                "description": item.description,
                "quantity": str(item.quantity),
                "unitPrice": format_cents(item.unit_price_cents),
                "itemType": item.item_type.value,
            }
            for item in invoice.line_items
        ],
        "createdAt": _iso(invoice.created_at),
        "updatedAt": _iso(invoice.updated_at),
    }
