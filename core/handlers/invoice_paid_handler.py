"""
Handler for InvoicePaid events.

On invoice payment, advances the linked project's status. Runs after the
payment is committed; a failure here is logged by the bus and never undoes
the payment.
"""

import logging
from typing import Callable

from core.events import InvoicePaid

logger = logging.getLogger(__name__)


def handle_invoice_paid(project_sync) -> Callable:
    """
    Factory that returns an InvoicePaid handler.

    Args:
        project_sync: Object with invoice_paid(invoice_id, project_id)

    Returns:
        Handler callable that notifies the project side
    """

    def handler(event: InvoicePaid):
        invoice = event.invoice
        if invoice.project_id is None:
            return

        project_sync.invoice_paid(invoice.id, invoice.project_id)

    return handler
