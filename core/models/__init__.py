"""Core domain models."""

from core.models.actor import ActorContext
from core.models.invoice import (
    Invoice, InvoiceCreate, InvoiceUpdate, InvoiceFilter, InvoiceStatus,
    LineItem, LineItemCreate, LineItemType,
    Payment, PaymentCreate, PaymentStatus,
)

__all__ = [
    # Actor
    "ActorContext",
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceUpdate", "InvoiceFilter", "InvoiceStatus",
    # LineItem
    "LineItem", "LineItemCreate", "LineItemType",
    # Payment
    "Payment", "PaymentCreate", "PaymentStatus",
]
