"""
Invoice service: the invoice lifecycle.

    (new) -> draft -> sent -> paid
                 |       |
                 +-------+-> cancelled

Drafts are freely editable and deletable. Sending freezes line items and
tax rate. PAID and CANCELLED are terminal. Totals are always recomputed
from line items through core.money, never accepted from callers.
"""

import logging
import secrets
from datetime import datetime
from uuid import UUID, uuid4

from core.audit import AuditAction, AuditEntity, AuditLogger, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoicePaid, InvoiceStatusChanged
from core.exceptions import (
    DuplicateInvoiceNumberError,
    InvalidAmountError,
    InvalidStateError,
    InvalidTransitionError,
    InvoiceNotFoundError,
)
from core.models import (
    ActorContext, Invoice, InvoiceCreate, InvoiceFilter, InvoiceStatus,
    InvoiceUpdate, LineItemCreate, Payment, PaymentCreate, PaymentStatus,
)
from core.money import compute_totals
from core.repositories.base import InvoiceRepository
from utils.timezone import now_utc, start_of_month

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    InvoiceStatus.DRAFT: {InvoiceStatus.SENT, InvoiceStatus.CANCELLED},
    InvoiceStatus.SENT: {InvoiceStatus.PAID, InvoiceStatus.CANCELLED},
}


def _totals_for(items: list[LineItemCreate], tax_rate) -> dict:
    totals = compute_totals(
        [(item.quantity, item.unit_price_cents) for item in items],
        tax_rate,
    )
    return {
        "subtotal_cents": totals.subtotal_cents,
        "tax_amount_cents": totals.tax_amount_cents,
        "total_amount_cents": totals.total_amount_cents,
    }


class InvoiceService:
    """Service for invoice lifecycle operations."""

    def __init__(
        self,
        repository: InvoiceRepository,
        audit: AuditLogger,
        event_bus: EventBus,
        config: BillingConfig | None = None,
    ):
        self.repository = repository
        self.audit = audit
        self.event_bus = event_bus
        self.config = config or BillingConfig()

    # -------------------------------------------------------------------------
    # Numbering
    # -------------------------------------------------------------------------

    def _generate_invoice_number(self) -> str:
        """
        Generate a candidate invoice number.

        Format: INV-YYYYMMDD-XXXXXXXX where X is random hex. Uniqueness is
        checked by the caller and enforced again by the store.
        """
        today = now_utc().strftime("%Y%m%d")
        return f"{self.config.invoice_number_prefix}-{today}-{secrets.token_hex(4).upper()}"

    def _unused_invoice_number(self) -> str:
        for _ in range(self.config.invoice_number_attempts):
            candidate = self._generate_invoice_number()
            if not self.repository.invoice_number_exists(candidate):
                return candidate
            logger.warning(f"Invoice number {candidate} already issued, retrying")

        raise DuplicateInvoiceNumberError(
            f"No unused invoice number after {self.config.invoice_number_attempts} attempts"
        )

    # -------------------------------------------------------------------------
    # Side channels
    # -------------------------------------------------------------------------

    def _audit(self, invoice_id: UUID, action: AuditAction, changes: dict, actor: ActorContext | None):
        """Audit is best-effort: the invoice write has already committed."""
        try:
            self.audit.log_change(
                entity_type=AuditEntity.INVOICE,
                entity_id=invoice_id,
                action=action,
                changes=changes,
                actor_id=actor.actor_id if actor else None,
            )
        except Exception:
            logger.exception("Audit log failed for invoice %s (%s)", invoice_id, action.value)

    def _transitioned(self, invoice: Invoice, previous: InvoiceStatus | None):
        self.event_bus.publish(InvoiceStatusChanged.create(
            invoice=invoice,
            previous_status=previous.value if previous else None,
        ))

    @staticmethod
    def _check_transition(invoice: Invoice, target: InvoiceStatus):
        if invoice.status.is_terminal or target not in _TRANSITIONS[invoice.status]:
            raise InvalidTransitionError(invoice.id, invoice.status.value, target.value)

    # -------------------------------------------------------------------------
    # Create / read
    # -------------------------------------------------------------------------

    def create(self, data: InvoiceCreate, actor: ActorContext) -> Invoice:
        """
        Create a draft invoice from line items.

        Args:
            data: Invoice creation data
            actor: Who is issuing the invoice (stored as designer_id)

        Returns:
            Created invoice in DRAFT status

        Raises:
            InvalidAmountError: If there are no items or any amount is invalid
        """
        if not data.line_items:
            raise InvalidAmountError("An invoice needs at least one line item")

        totals = _totals_for(data.line_items, data.tax_rate)
        now = now_utc()

        header = {
            "id": uuid4(),
            "client_id": data.client_id,
            "designer_id": actor.actor_id,
            "project_id": data.project_id,
            "title": data.title,
            "description": data.description,
            "status": InvoiceStatus.DRAFT.value,
            "tax_rate": data.tax_rate,
            **totals,
            "due_at": data.due_at,
            "sent_at": None,
            "paid_at": None,
            "cancelled_at": None,
            "payment_method": None,
            "payment_reference": None,
            "gateway_order_id": None,
            "notes": data.notes,
            "terms": data.terms,
            "created_at": now,
            "updated_at": now,
        }

        invoice = None
        for _ in range(self.config.invoice_number_attempts):
            header["invoice_number"] = self._unused_invoice_number()
            try:
                invoice = self.repository.create(header, data.line_items)
                break
            except DuplicateInvoiceNumberError:
                # Lost a race for the number between check and insert
                logger.warning(f"Invoice number {header['invoice_number']} taken at insert")

        if invoice is None:
            raise DuplicateInvoiceNumberError("Could not allocate an invoice number")

        logger.info(f"Invoice {invoice.invoice_number} created ({invoice.total_amount_cents} cents)")

        self._audit(invoice.id, AuditAction.CREATE, {
            "created": invoice.model_dump(mode="json", exclude={"payments"})
        }, actor)
        self._transitioned(invoice, None)

        return invoice

    def get_by_id(self, invoice_id: UUID) -> Invoice | None:
        """
        Get invoice by ID.

        Returns:
            Invoice with items and payments if found, None otherwise.
        """
        return self.repository.get(invoice_id)

    def get(self, invoice_id: UUID) -> Invoice:
        """
        Get invoice by ID or fail.

        Raises:
            InvoiceNotFoundError: If invoice not found
        """
        invoice = self.repository.get(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def list_invoices(self, criteria: InvoiceFilter | None = None) -> list[Invoice]:
        """List invoices matching criteria, newest first."""
        return self.repository.list_invoices(criteria)

    def list_for_client(self, client_id: UUID, limit: int = 50) -> list[Invoice]:
        """List a client's invoices ordered by creation time DESC."""
        return self.repository.list_invoices(InvoiceFilter(client_id=client_id, limit=limit))

    def list_unpaid(self, limit: int = 50) -> list[Invoice]:
        """List sent-but-unpaid invoices, earliest due first."""
        return self.repository.list_invoices(InvoiceFilter(
            statuses=[InvoiceStatus.SENT], limit=limit, order_by_due=True,
        ))

    # -------------------------------------------------------------------------
    # Edits
    # -------------------------------------------------------------------------

    def update(self, invoice_id: UUID, data: InvoiceUpdate, actor: ActorContext) -> Invoice:
        """
        Update invoice fields.

        Changing line items or tax rate re-runs the calculator and rewrites
        all three totals in the same write.

        Raises:
            InvoiceNotFoundError: If invoice not found
            ImmutableFieldError: If line items or tax rate change after DRAFT
            InvalidAmountError: If new items or tax rate are invalid
        """
        current = self.get(invoice_id)

        patch = data.model_dump(exclude_unset=True, exclude={"line_items"})
        for required in ("title", "tax_rate"):
            if patch.get(required, 0) is None:
                del patch[required]
        if data.line_items is not None:
            patch["line_items"] = data.line_items

        if not patch:
            return current

        if "line_items" in patch or "tax_rate" in patch:
            if current.status == InvoiceStatus.DRAFT:
                items = data.line_items if data.line_items is not None else [
                    LineItemCreate(
                        description=item.description,
                        quantity=item.quantity,
                        unit_price_cents=item.unit_price_cents,
                        item_type=item.item_type,
                    )
                    for item in current.line_items
                ]
                tax_rate = data.tax_rate if data.tax_rate is not None else current.tax_rate
                patch.update(_totals_for(items, tax_rate))

        updated = self.repository.update(invoice_id, patch)

        changes = compute_changes(
            current.model_dump(mode="json", exclude={"payments"}),
            updated.model_dump(mode="json", exclude={"payments"}),
        )
        if changes:
            self._audit(invoice_id, AuditAction.UPDATE, changes, actor)

        return updated

    def delete(self, invoice_id: UUID, actor: ActorContext) -> bool:
        """
        Delete a draft invoice.

        Raises:
            InvoiceNotFoundError: If invoice not found
            InvalidStateError: If invoice is not a draft
        """
        current = self.get(invoice_id)
        self.repository.delete(invoice_id)

        logger.info(f"Invoice {current.invoice_number} deleted")
        self._audit(invoice_id, AuditAction.DELETE, {
            "deleted": current.model_dump(mode="json", exclude={"payments"})
        }, actor)

        return True

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def send(self, invoice_id: UUID, actor: ActorContext) -> Invoice:
        """
        Send a draft invoice. Line items and tax rate are frozen from here on.

        Raises:
            InvoiceNotFoundError: If invoice not found
            InvalidTransitionError: If invoice is not a draft
        """
        current = self.get(invoice_id)
        self._check_transition(current, InvoiceStatus.SENT)

        now = now_utc()
        try:
            updated = self.repository.update(
                invoice_id,
                {"status": InvoiceStatus.SENT.value, "sent_at": now},
                expected_status=InvoiceStatus.DRAFT,
            )
        except InvalidStateError:
            latest = self.get(invoice_id)
            raise InvalidTransitionError(invoice_id, latest.status.value, InvoiceStatus.SENT.value)

        logger.info(f"Invoice {updated.invoice_number} sent")
        self._audit(invoice_id, AuditAction.TRANSITION, {
            "status": {"old": current.status.value, "new": InvoiceStatus.SENT.value},
            "sent_at": {"old": None, "new": now.isoformat()},
        }, actor)
        self._transitioned(updated, current.status)

        return updated

    def cancel(self, invoice_id: UUID, actor: ActorContext) -> Invoice:
        """
        Cancel a draft or sent invoice that has no completed payment.

        Raises:
            InvoiceNotFoundError: If invoice not found
            InvalidTransitionError: If invoice is already paid or cancelled
            InvalidStateError: If a completed payment exists
        """
        current = self.get(invoice_id)
        self._check_transition(current, InvoiceStatus.CANCELLED)

        if current.amount_paid_cents > 0:
            raise InvalidStateError(
                f"Invoice {invoice_id} has completed payments and cannot be cancelled"
            )

        now = now_utc()
        try:
            updated = self.repository.cancel(invoice_id, now, expected_status=current.status)
        except InvalidStateError:
            latest = self.get(invoice_id)
            if latest.status != current.status:
                raise InvalidTransitionError(invoice_id, latest.status.value, InvoiceStatus.CANCELLED.value)
            logger.warning(f"Cancel of {latest.invoice_number} lost to a concurrent payment")
            raise InvalidStateError(
                f"Invoice {invoice_id} has completed payments and cannot be cancelled"
            )

        logger.info(f"Invoice {updated.invoice_number} cancelled")
        self._audit(invoice_id, AuditAction.TRANSITION, {
            "status": {"old": current.status.value, "new": InvoiceStatus.CANCELLED.value},
            "cancelled_at": {"old": None, "new": now.isoformat()},
        }, actor)
        self._transitioned(updated, current.status)

        return updated

    def attach_gateway_order(self, invoice_id: UUID, order_id: str, actor: ActorContext | None = None) -> Invoice:
        """
        Remember the gateway order opened for a sent invoice.

        Raises:
            InvoiceNotFoundError: If invoice not found
            InvalidStateError: If invoice is not SENT
        """
        current = self.get(invoice_id)
        if current.status != InvoiceStatus.SENT:
            raise InvalidStateError(
                f"Invoice {invoice_id} is {current.status.value}; only sent invoices can be paid"
            )

        updated = self.repository.update(
            invoice_id, {"gateway_order_id": order_id}, expected_status=InvoiceStatus.SENT,
        )
        self._audit(invoice_id, AuditAction.UPDATE, {
            "gateway_order_id": {"old": current.gateway_order_id, "new": order_id},
        }, actor)
        return updated

    def mark_paid(
        self,
        invoice_id: UUID,
        payment: PaymentCreate,
        actor: ActorContext | None = None,
    ) -> tuple[Invoice, Payment]:
        """
        Record a completed capture and, once fully covered, move SENT -> PAID.

        Safe to call repeatedly for the same capture: a transaction id that is
        already recorded, or an invoice that is already PAID, returns the
        existing payment without writing anything.

        Args:
            invoice_id: Invoice UUID
            payment: Completed capture (amount, method, transaction id)
            actor: Who triggered it; None for gateway-driven reconciliation

        Returns:
            (invoice, payment) after the write

        Raises:
            InvoiceNotFoundError: If invoice not found
            InvalidTransitionError: If invoice is DRAFT or CANCELLED
            InvalidStateError: If the transaction id is recorded on another invoice
        """
        current = self.get(invoice_id)

        if payment.transaction_id:
            existing = self.repository.find_payment(payment.transaction_id)
            if existing is not None and existing.invoice_id != invoice_id:
                logger.error(
                    f"Capture {payment.transaction_id} is already recorded on invoice "
                    f"{existing.invoice_id}; refusing to apply it to {current.invoice_number}"
                )
                raise InvalidStateError(
                    f"Transaction {payment.transaction_id} already settles another invoice"
                )
            if existing is not None:
                logger.info(f"Capture {payment.transaction_id} already recorded on {current.invoice_number}")
                # current may predate the write that recorded it
                return self.get(invoice_id), existing

        if current.status == InvoiceStatus.PAID:
            return current, current.completed_payment()

        self._check_transition(current, InvoiceStatus.PAID)

        payment = payment.model_copy(update={"status": PaymentStatus.COMPLETED})

        if current.amount_paid_cents + payment.amount_cents < current.total_amount_cents:
            recorded = self.repository.record_payment(invoice_id, payment)
            logger.info(
                f"Partial payment of {payment.amount_cents} cents on {current.invoice_number}; "
                f"balance {current.balance_due_cents - payment.amount_cents} cents"
            )
            self._audit_payment(current, recorded, actor)
            return self.get(invoice_id), recorded

        paid_at = now_utc()
        recorded = self.repository.mark_paid(
            invoice_id,
            {
                "paid_at": paid_at,
                "payment_method": payment.payment_method,
                "payment_reference": payment.transaction_id,
            },
            payment,
        )

        if recorded is None:
            # Another request flipped the status first
            latest = self.get(invoice_id)
            if latest.status == InvoiceStatus.PAID:
                logger.info(f"Invoice {latest.invoice_number} paid by a concurrent capture")
                return latest, latest.completed_payment()
            raise InvalidTransitionError(invoice_id, latest.status.value, InvoiceStatus.PAID.value)

        updated = self.get(invoice_id)
        logger.info(f"Invoice {updated.invoice_number} paid ({recorded.transaction_id})")

        self._audit(invoice_id, AuditAction.TRANSITION, {
            "status": {"old": current.status.value, "new": InvoiceStatus.PAID.value},
            "paid_at": {"old": None, "new": paid_at.isoformat()},
            "payment_reference": {"old": current.payment_reference, "new": payment.transaction_id},
        }, actor)
        self._audit_payment(current, recorded, actor)
        self._transitioned(updated, current.status)
        self.event_bus.publish(InvoicePaid.create(invoice=updated, payment=recorded))

        return updated, recorded

    def record_failed_payment(
        self,
        invoice_id: UUID,
        payment: PaymentCreate,
        actor: ActorContext | None = None,
    ) -> Payment | None:
        """
        Log a failed settlement attempt as a 'failed' payment row.

        Audit only: never changes the invoice. Errors are logged and swallowed.
        """
        try:
            current = self.get(invoice_id)
            recorded = self.repository.record_payment(
                invoice_id, payment.model_copy(update={"status": PaymentStatus.FAILED})
            )
        except Exception:
            logger.exception("Could not record failed payment on invoice %s", invoice_id)
            return None

        self._audit_payment(current, recorded, actor)
        return recorded

    def _audit_payment(self, invoice: Invoice, payment: Payment, actor: ActorContext | None):
        try:
            self.audit.log_change(
                entity_type=AuditEntity.PAYMENT,
                entity_id=payment.id,
                action=AuditAction.PAYMENT,
                changes={"created": payment.model_dump(mode="json")},
                actor_id=actor.actor_id if actor else None,
            )
        except Exception:
            logger.exception("Audit log failed for payment on %s", invoice.invoice_number)

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def get_stats(self, now: datetime | None = None) -> dict:
        """
        Revenue and status counts across all invoices.

        Returns:
            Dict with total_revenue_cents, paid_invoices, pending_invoices,
            overdue_invoices, this_month_revenue_cents
        """
        now = now or now_utc()
        month_start = start_of_month(now)

        stats = {
            "total_revenue_cents": 0,
            "paid_invoices": 0,
            "pending_invoices": 0,
            "overdue_invoices": 0,
            "this_month_revenue_cents": 0,
        }

        offset = 0
        while True:
            page = self.repository.list_invoices(InvoiceFilter(
                statuses=[InvoiceStatus.PAID, InvoiceStatus.SENT], limit=500, offset=offset,
            ))
            for invoice in page:
                if invoice.status == InvoiceStatus.PAID:
                    stats["total_revenue_cents"] += invoice.total_amount_cents
                    stats["paid_invoices"] += 1
                    if invoice.paid_at and invoice.paid_at >= month_start:
                        stats["this_month_revenue_cents"] += invoice.total_amount_cents
                elif invoice.status == InvoiceStatus.SENT:
                    stats["pending_invoices"] += 1
                    if invoice.due_at and invoice.due_at < now:
                        stats["overdue_invoices"] += 1
            if len(page) < 500:
                break
            offset += 500

        return stats
