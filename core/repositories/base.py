"""
Invoice repository contract.

InvoiceRepository owns the persistence rules every store must follow:
- create writes header then items; if the items write fails the header is
  removed again (compensating delete) and the original error re-raised
- reads always return the invoice with its line items and payments attached
- line items and tax rate are frozen once an invoice leaves DRAFT
- only drafts can be deleted
- the paid transition is a conditional write on status == 'sent'
- payments are only inserted while the invoice is not cancelled, and a
  cancel only lands while no completed payment exists

Concrete stores implement the underscore primitives below. Each primitive
must be atomic on its own; none of them assume a transaction spanning
more than one call.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any
from uuid import UUID, uuid4

from core.exceptions import (
    ImmutableFieldError,
    InvalidAmountError,
    InvalidStateError,
    InvoiceNotFoundError,
)
from core.models import (
    Invoice, InvoiceFilter, InvoiceStatus,
    LineItemCreate, Payment, PaymentCreate, PaymentStatus,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

_UPDATABLE_COLUMNS = {
    "title", "description", "tax_rate", "due_at", "notes", "terms",
    "status", "sent_at", "paid_at", "cancelled_at",
    "payment_method", "payment_reference", "gateway_order_id",
    "subtotal_cents", "tax_amount_cents", "total_amount_cents",
}

# Fields that define what is being billed; frozen after DRAFT
_FROZEN_AFTER_DRAFT = {
    "line_items", "tax_rate",
    "subtotal_cents", "tax_amount_cents", "total_amount_cents",
}


class InvoiceRepository(ABC):
    """Durable storage for invoices, their line items and payments."""

    # -------------------------------------------------------------------------
    # Public contract
    # -------------------------------------------------------------------------

    def create(self, header: dict[str, Any], items: list[LineItemCreate]) -> Invoice:
        """
        Persist a new invoice and its line items as one unit.

        Args:
            header: Invoice columns (id, invoice_number, totals, ...)
            items: Line items in display order

        Returns:
            The stored invoice, fully materialized

        Raises:
            InvalidAmountError: If items is empty
            DuplicateInvoiceNumberError: If invoice_number is taken
            Exception: Whatever the store raised while writing items,
                after the header has been removed again
        """
        if not items:
            raise InvalidAmountError("An invoice needs at least one line item")

        invoice_id = header["id"]
        self._insert_invoice(header)

        try:
            self._insert_line_items(self._line_item_rows(invoice_id, items, header["created_at"]))
        except Exception:
            logger.error(
                "Line items failed for invoice %s; removing header", invoice_id
            )
            self._purge_invoice(invoice_id)
            raise

        return self.get(invoice_id)

    def get(self, invoice_id: UUID) -> Invoice | None:
        """
        Get invoice by ID.

        Returns:
            Invoice with items and payments if found and not deleted, None otherwise.
        """
        row = self._fetch_invoice(invoice_id)
        if row is None:
            return None
        return self._materialize(row)

    def list_invoices(self, criteria: InvoiceFilter | None = None) -> list[Invoice]:
        """List invoices matching criteria, newest first (or by due date)."""
        criteria = criteria or InvoiceFilter()
        return [self._materialize(row) for row in self._query_invoices(criteria)]

    def update(
        self,
        invoice_id: UUID,
        patch: dict[str, Any],
        expected_status: InvoiceStatus | None = None,
    ) -> Invoice:
        """
        Apply a patch to an invoice.

        Args:
            invoice_id: Invoice UUID
            patch: Column values; "line_items" replaces all items
            expected_status: Only write if the stored status still matches

        Returns:
            Updated invoice

        Raises:
            InvoiceNotFoundError: If invoice not found
            ImmutableFieldError: If patch touches frozen fields on a non-draft
            InvalidStateError: If the status changed underneath the write
        """
        current = self.get(invoice_id)
        if current is None:
            raise InvoiceNotFoundError(invoice_id)

        frozen = sorted(_FROZEN_AFTER_DRAFT & patch.keys())
        if frozen:
            if current.status != InvoiceStatus.DRAFT:
                raise ImmutableFieldError(invoice_id, frozen)
            expected_status = InvoiceStatus.DRAFT

        for field in patch:
            if field not in _UPDATABLE_COLUMNS and field != "line_items":
                logger.warning(
                    f"Attempted to update unknown field '{field}' on invoice {invoice_id}"
                )

        fields = {k: v for k, v in patch.items() if k in _UPDATABLE_COLUMNS}
        now = now_utc()
        fields["updated_at"] = now

        item_rows = None
        if "line_items" in patch:
            if not patch["line_items"]:
                raise InvalidAmountError("An invoice needs at least one line item")
            item_rows = self._line_item_rows(invoice_id, patch["line_items"], now)

        written = self._write_update(invoice_id, fields, item_rows, expected_status)
        if not written:
            raise InvalidStateError(
                f"Invoice {invoice_id} changed status during update "
                f"(expected '{expected_status.value if expected_status else None}')"
            )

        return self.get(invoice_id)

    def delete(self, invoice_id: UUID) -> bool:
        """
        Delete a draft invoice.

        The invoice number stays reserved so it is never issued again.

        Raises:
            InvoiceNotFoundError: If invoice not found
            InvalidStateError: If invoice is not a draft
        """
        current = self.get(invoice_id)
        if current is None:
            raise InvoiceNotFoundError(invoice_id)

        if current.status != InvoiceStatus.DRAFT:
            raise InvalidStateError(
                f"Invoice {invoice_id} is {current.status.value}; only drafts can be deleted"
            )

        if not self._soft_delete(invoice_id, now_utc()):
            raise InvalidStateError(f"Invoice {invoice_id} left draft during delete")

        return True

    def record_payment(self, invoice_id: UUID, payment: PaymentCreate) -> Payment:
        """
        Append a payment record.

        A payment whose transaction_id is already recorded on this invoice is
        returned as is.

        Raises:
            InvoiceNotFoundError: If invoice not found
            InvalidStateError: If invoice is cancelled, or the transaction_id
                belongs to another invoice
        """
        current = self.get(invoice_id)
        if current is None:
            raise InvoiceNotFoundError(invoice_id)

        if current.status == InvoiceStatus.CANCELLED:
            raise InvalidStateError(f"Invoice {invoice_id} is cancelled; no payments accepted")

        if payment.transaction_id:
            existing = self.find_payment(payment.transaction_id)
            if existing is not None and existing.invoice_id != invoice_id:
                raise InvalidStateError(
                    f"Transaction {payment.transaction_id} is recorded on invoice {existing.invoice_id}"
                )
            if existing is not None:
                return existing

        row = self._insert_payment(self._payment_row(invoice_id, payment))
        if row is None:
            raise InvalidStateError(f"Invoice {invoice_id} was cancelled; no payments accepted")
        return Payment.model_validate(row)

    def cancel(self, invoice_id: UUID, cancelled_at, expected_status: InvoiceStatus) -> Invoice:
        """
        Move an invoice to CANCELLED.

        Only writes if the status is still expected_status and no completed
        payment has been recorded, checked in the same atomic step.

        Raises:
            InvoiceNotFoundError: If invoice not found
            InvalidStateError: If the status moved or a completed payment exists
        """
        fields = {
            "status": InvoiceStatus.CANCELLED.value,
            "cancelled_at": cancelled_at,
            "updated_at": cancelled_at,
        }
        if not self._cancel(invoice_id, fields, expected_status):
            current = self.get(invoice_id)
            if current is None:
                raise InvoiceNotFoundError(invoice_id)
            raise InvalidStateError(
                f"Invoice {invoice_id} is {current.status.value} with "
                f"{current.amount_paid_cents} cents paid; cannot cancel"
            )
        return self.get(invoice_id)

    def mark_paid(
        self,
        invoice_id: UUID,
        fields: dict[str, Any],
        payment: PaymentCreate,
    ) -> Payment | None:
        """
        Move a SENT invoice to PAID and record its payment in one write.

        Compare-and-swap on status: the write only happens if the invoice is
        still SENT.

        Returns:
            The recorded payment, or None if the invoice was no longer SENT
        """
        fields = {k: v for k, v in fields.items() if k in _UPDATABLE_COLUMNS}
        fields["status"] = InvoiceStatus.PAID.value
        fields["updated_at"] = now_utc()

        row = self._mark_paid(invoice_id, fields, self._payment_row(invoice_id, payment))
        if row is None:
            return None
        return Payment.model_validate(row)

    def find_payment(self, transaction_id: str) -> Payment | None:
        """Look up a payment by gateway transaction id."""
        row = self._fetch_payment_by_transaction(transaction_id)
        return Payment.model_validate(row) if row else None

    def invoice_number_exists(self, invoice_number: str) -> bool:
        """Whether a number was ever issued, including deleted invoices."""
        return self._invoice_number_taken(invoice_number)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _materialize(self, row: dict[str, Any]) -> Invoice:
        invoice_id = row["id"]
        return Invoice.model_validate({
            **row,
            "line_items": self._fetch_line_items(invoice_id),
            "payments": self._fetch_payments(invoice_id),
        })

    @staticmethod
    def _line_item_rows(invoice_id: UUID, items: list[LineItemCreate], created_at) -> list[dict]:
        return [
            {
                "id": uuid4(),
                "invoice_id": invoice_id,
                "position": position,
                "description": item.description,
                "quantity": item.quantity,
                "unit_price_cents": item.unit_price_cents,
                "item_type": item.item_type.value,
                "created_at": created_at,
            }
            for position, item in enumerate(items)
        ]

    @staticmethod
    def _payment_row(invoice_id: UUID, payment: PaymentCreate) -> dict:
        return {
            "id": uuid4(),
            "invoice_id": invoice_id,
            "amount_cents": payment.amount_cents,
            "payment_method": payment.payment_method,
            "status": PaymentStatus(payment.status).value,
            "transaction_id": payment.transaction_id,
            "gateway_order_id": payment.gateway_order_id,
            "failure_reason": payment.failure_reason,
            "processed_at": now_utc(),
        }

    # -------------------------------------------------------------------------
    # Store primitives
    # -------------------------------------------------------------------------

    @abstractmethod
    def _insert_invoice(self, row: dict[str, Any]) -> None:
        """Insert header. Raise DuplicateInvoiceNumberError on number collision."""
        raise NotImplementedError

    @abstractmethod
    def _insert_line_items(self, rows: list[dict[str, Any]]) -> None:
        raise NotImplementedError

    @abstractmethod
    def _purge_invoice(self, invoice_id: UUID) -> None:
        """Hard delete a header and anything attached to it."""
        raise NotImplementedError

    @abstractmethod
    def _fetch_invoice(self, invoice_id: UUID) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def _fetch_line_items(self, invoice_id: UUID) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def _fetch_payments(self, invoice_id: UUID) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def _fetch_payment_by_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def _query_invoices(self, criteria: InvoiceFilter) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def _write_update(
        self,
        invoice_id: UUID,
        fields: dict[str, Any],
        item_rows: list[dict[str, Any]] | None,
        expected_status: InvoiceStatus | None,
    ) -> bool:
        """Write fields (and replace items) atomically. False if status guard failed."""
        raise NotImplementedError

    @abstractmethod
    def _soft_delete(self, invoice_id: UUID, deleted_at) -> bool:
        """Mark a DRAFT invoice deleted. False if it is no longer a draft."""
        raise NotImplementedError

    @abstractmethod
    def _insert_payment(self, row: dict[str, Any]) -> dict[str, Any] | None:
        """Insert unless the invoice is cancelled or deleted. None if refused."""
        raise NotImplementedError

    @abstractmethod
    def _cancel(
        self, invoice_id: UUID, fields: dict[str, Any], expected_status: InvoiceStatus
    ) -> bool:
        """Set fields iff status matches and no completed payment exists."""
        raise NotImplementedError

    @abstractmethod
    def _mark_paid(
        self, invoice_id: UUID, fields: dict[str, Any], payment_row: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Set fields and insert payment iff status is SENT. None if not SENT."""
        raise NotImplementedError

    @abstractmethod
    def _invoice_number_taken(self, invoice_number: str) -> bool:
        raise NotImplementedError
