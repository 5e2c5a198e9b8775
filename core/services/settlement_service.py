"""
Payment settlement against the PayPal gateway.

Two-phase protocol: create_order() opens a gateway order for a sent
invoice's exact amount; after the payer approves it out-of-band, capture()
collects the funds and drives the invoice to PAID through InvoiceService.

A declined instrument is not an error here. The invoice stays SENT and the
caller is told to restart approval for the same order. Any other gateway
failure raises PaymentFailedError with the gateway debug id.

Retries are always caller-driven. Nothing in this module loops.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from clients.paypal_client import (
    ORDER_ALREADY_CAPTURED,
    Captured,
    Failed,
    PayPalClient,
    PayPalError,
    Recoverable,
    parse_capture,
)
from core.config import BillingConfig
from core.exceptions import (
    InvalidAmountError,
    InvalidStateError,
    InvalidTransitionError,
    PaymentFailedError,
)
from core.models import ActorContext, Invoice, InvoiceStatus, Payment, PaymentCreate, PaymentStatus
from core.money import format_cents, parse_amount
from core.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)


class SettlementOutcome(str, Enum):
    PAID = "paid"
    ALREADY_PAID = "already_paid"
    PARTIAL = "partial"
    RESTART_APPROVAL = "restart_approval"
    PENDING = "pending"


@dataclass(frozen=True)
class SettlementResult:
    """What happened to a settlement attempt."""
    outcome: SettlementOutcome
    invoice: Invoice
    payment: Payment | None = None
    order_id: str | None = None
    issue: str | None = None
    debug_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "invoice_id": str(self.invoice.id),
            "status": self.invoice.status.value,
            "order_id": self.order_id,
            "payment": self.payment.model_dump(mode="json") if self.payment else None,
            "issue": self.issue,
            "debug_id": self.debug_id,
        }


class SettlementService:
    """Coordinates gateway orders and captures with the invoice lifecycle."""

    def __init__(
        self,
        invoice_service: InvoiceService,
        gateway: PayPalClient,
        config: BillingConfig | None = None,
    ):
        self.invoice_service = invoice_service
        self.gateway = gateway
        self.config = config or BillingConfig()

    @staticmethod
    def _require_sent(invoice: Invoice):
        if invoice.status != InvoiceStatus.SENT:
            raise InvalidTransitionError(invoice.id, invoice.status.value, InvoiceStatus.PAID.value)

    @staticmethod
    def _require_own_order(invoice: Invoice, order_id: str):
        if invoice.gateway_order_id and order_id != invoice.gateway_order_id:
            raise InvalidStateError(
                f"Order {order_id} was not opened for invoice {invoice.invoice_number}"
            )

    @staticmethod
    def _captured_for(invoice: Invoice, captured: Captured) -> bool:
        """The capture names this invoice, by reference_id or by its stored order."""
        if captured.reference_id is not None:
            return captured.reference_id == str(invoice.id)
        return captured.order_id == invoice.gateway_order_id

    def _already_paid(self, invoice: Invoice, order_id: str | None) -> SettlementResult:
        logger.info(f"Invoice {invoice.invoice_number} already paid; skipping capture")
        return SettlementResult(
            outcome=SettlementOutcome.ALREADY_PAID,
            invoice=invoice,
            payment=invoice.completed_payment(),
            order_id=order_id,
        )

    # -------------------------------------------------------------------------
    # Phase 1: order
    # -------------------------------------------------------------------------

    def create_order(self, invoice_id: UUID, actor: ActorContext | None = None) -> dict:
        """
        Open a gateway order for a sent invoice.

        The order amount is the invoice's outstanding balance formatted from
        stored cents, so it matches total_amount character for character.

        Returns:
            Dict with order_id, approve_url, amount, currency

        Raises:
            InvoiceNotFoundError: If invoice not found
            InvalidTransitionError: If invoice is not SENT
            PaymentFailedError: If the gateway rejects the order
        """
        invoice = self.invoice_service.get(invoice_id)
        self._require_sent(invoice)

        amount = format_cents(invoice.balance_due_cents)
        description = f"Invoice {invoice.invoice_number}: {invoice.title}"

        try:
            order = self.gateway.create_order(
                reference_id=str(invoice.id),
                amount=amount,
                description=description,
                currency=self.config.currency,
                brand_name=self.config.brand_name,
            )
        except PayPalError as e:
            raise PaymentFailedError(str(e), debug_id=e.debug_id, issue=e.issue)

        self.invoice_service.attach_gateway_order(invoice.id, order.order_id, actor)

        return {
            "order_id": order.order_id,
            "status": order.status,
            "approve_url": order.approve_url,
            "amount": amount,
            "currency": self.config.currency,
        }

    # -------------------------------------------------------------------------
    # Phase 2: capture
    # -------------------------------------------------------------------------

    def capture(
        self,
        invoice_id: UUID,
        order_id: str,
        actor: ActorContext | None = None,
    ) -> SettlementResult:
        """
        Capture an approved order and settle the invoice.

        Args:
            invoice_id: Invoice being paid
            order_id: Gateway order the payer approved
            actor: Who triggered the capture

        Returns:
            SettlementResult; RESTART_APPROVAL when the instrument was declined

        Raises:
            InvoiceNotFoundError: If invoice not found
            InvalidTransitionError: If invoice is DRAFT or CANCELLED
            InvalidStateError: If the invoice holds a different gateway order
            PaymentFailedError: On any non-recoverable gateway failure,
                or a capture that belongs to another invoice
        """
        invoice = self.invoice_service.get(invoice_id)

        # Double-submission guard: never capture twice
        if invoice.status == InvoiceStatus.PAID:
            return self._already_paid(invoice, order_id)
        self._require_sent(invoice)
        self._require_own_order(invoice, order_id)

        result = self.gateway.capture_order(order_id)

        if isinstance(result, Captured):
            return self._settle(invoice, result, actor)

        if isinstance(result, Recoverable):
            logger.info(
                f"Capture of {order_id} for {invoice.invoice_number} declined ({result.issue}); "
                f"restart approval"
            )
            return SettlementResult(
                outcome=SettlementOutcome.RESTART_APPROVAL,
                invoice=invoice,
                order_id=order_id,
                issue=result.issue,
                debug_id=result.debug_id,
            )

        if result.issue == ORDER_ALREADY_CAPTURED:
            logger.info(f"Order {order_id} was already captured; reconciling")
            return self.reconcile(invoice_id, order_id, actor)

        self._fail(invoice, result, actor)

    def _settle(self, invoice: Invoice, captured: Captured, actor: ActorContext | None) -> SettlementResult:
        if not self._captured_for(invoice, captured):
            logger.error(
                f"Capture {captured.transaction_id} on order {captured.order_id} "
                f"(reference {captured.reference_id}) does not belong to {invoice.invoice_number}"
            )
            self._fail(invoice, Failed(
                order_id=captured.order_id,
                issue="ORDER_MISMATCH",
                message="Captured order does not belong to this invoice",
            ), actor)

        try:
            amount_cents = parse_amount(captured.amount)
        except InvalidAmountError:
            self._fail(invoice, Failed(
                order_id=captured.order_id,
                issue="MALFORMED_RESPONSE",
                message=f"Unreadable capture amount {captured.amount!r}",
            ), actor)

        if captured.currency != self.config.currency:
            logger.warning(
                f"Capture {captured.transaction_id} in {captured.currency}, "
                f"expected {self.config.currency}"
            )

        updated, payment = self.invoice_service.mark_paid(
            invoice.id,
            PaymentCreate(
                amount_cents=amount_cents,
                payment_method=self.config.payment_method,
                transaction_id=captured.transaction_id,
                gateway_order_id=captured.order_id,
            ),
            actor,
        )

        outcome = SettlementOutcome.PAID if updated.status == InvoiceStatus.PAID else SettlementOutcome.PARTIAL
        return SettlementResult(
            outcome=outcome,
            invoice=updated,
            payment=payment,
            order_id=captured.order_id,
        )

    def _fail(self, invoice: Invoice, failed: Failed, actor: ActorContext | None):
        """Raise PaymentFailedError, logging a failed payment row first if configured."""
        if self.config.record_failed_payments:
            self.invoice_service.record_failed_payment(
                invoice.id,
                PaymentCreate(
                    amount_cents=0,
                    payment_method=self.config.payment_method,
                    status=PaymentStatus.FAILED,
                    gateway_order_id=failed.order_id,
                    failure_reason=f"{failed.issue}: {failed.message}",
                ),
                actor,
            )

        logger.error(
            f"Payment failed for {invoice.invoice_number} on order {failed.order_id}: "
            f"{failed.issue} (debug_id={failed.debug_id})"
        )
        raise PaymentFailedError(failed.message, debug_id=failed.debug_id, issue=failed.issue)

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def reconcile(
        self,
        invoice_id: UUID,
        order_id: str | None = None,
        actor: ActorContext | None = None,
    ) -> SettlementResult:
        """
        Record a capture that completed at the gateway but never reached us.

        Reads the gateway order. A COMPLETED order settles the invoice exactly
        as a live capture would; anything else leaves it untouched.

        Args:
            invoice_id: Invoice to reconcile
            order_id: Gateway order; defaults to the one stored on the invoice

        Returns:
            SettlementResult; PENDING when the order has not been captured

        Raises:
            InvalidStateError: If no gateway order is known for the invoice,
                or order_id is not the invoice's order
            PaymentFailedError: If the gateway cannot be read
        """
        invoice = self.invoice_service.get(invoice_id)
        order_id = order_id or invoice.gateway_order_id

        if invoice.status == InvoiceStatus.PAID:
            return self._already_paid(invoice, order_id)
        self._require_sent(invoice)

        if not order_id:
            raise InvalidStateError(f"Invoice {invoice_id} has no gateway order to reconcile")
        self._require_own_order(invoice, order_id)

        try:
            order = self.gateway.get_order(order_id)
        except PayPalError as e:
            raise PaymentFailedError(str(e), debug_id=e.debug_id, issue=e.issue)

        status = order.get("status")
        if status != "COMPLETED":
            logger.info(f"Order {order_id} for {invoice.invoice_number} is {status}; nothing to reconcile")
            return SettlementResult(
                outcome=SettlementOutcome.PENDING,
                invoice=invoice,
                order_id=order_id,
                issue=status,
            )

        result = parse_capture(order_id, order)
        if isinstance(result, Captured):
            return self._settle(invoice, result, actor)

        self._fail(invoice, result, actor)
