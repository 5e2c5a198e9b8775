"""
Domain events for invoicing.

Immutable event objects that represent invoice state changes. A service
publishes what happened; handlers (project status sync, list views
watching for updates) react without the publisher knowing who's listening.

Events carry the full invoice so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class InvoicingEvent:
    """Base class for all invoicing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


@dataclass(frozen=True)
class InvoiceEvent(InvoicingEvent):
    """Events related to invoice lifecycle."""
    invoice: Any = None  # Invoice; Any avoids a circular import

    @property
    def invoice_id(self) -> UUID:
        return self.invoice.id


@dataclass(frozen=True)
class InvoiceStatusChanged(InvoiceEvent):
    """
    Invoice entered a new lifecycle status (including creation as draft).

    Published after every successful transition.
    """
    previous_status: str | None = None

    @property
    def new_status(self) -> str:
        return self.invoice.status.value

    @classmethod
    def create(cls, invoice: Any, previous_status: str | None = None) -> "InvoiceStatusChanged":
        return cls(invoice=invoice, previous_status=previous_status)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice was fully paid. Published once per paid transition."""
    payment: Any = None

    @classmethod
    def create(cls, invoice: Any, payment: Any) -> "InvoicePaid":
        return cls(invoice=invoice, payment=payment)
