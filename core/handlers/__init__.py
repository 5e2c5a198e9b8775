"""Event handlers wired onto the EventBus at startup."""

from core.handlers.invoice_paid_handler import handle_invoice_paid
