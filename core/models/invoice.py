"""Invoice domain models.

All amounts are stored in cents (integer) to avoid floating point issues.
$10.00 = 1000 cents. Tax rate is a percentage (Decimal("8.25") = 8.25%).
Quantities are Decimals so fractional units (hours) can be billed.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from core.money import format_cents, line_total_cents, round_cents
from utils.timezone import to_utc


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED)


class LineItemType(str, Enum):
    """Category tag for a billable line."""

    SERVICE = "service"
    PRODUCT = "product"
    DESIGN = "design"
    CONSULTATION = "consultation"


class PaymentStatus(str, Enum):
    """Outcome of a settlement attempt."""

    COMPLETED = "completed"
    FAILED = "failed"
    PENDING = "pending"


# =============================================================================
# LINE ITEMS
# =============================================================================


class LineItemCreate(BaseModel):
    """
    One billable line as submitted.

    Quantity and price bounds are enforced by core.money.compute_totals so
    every entry point reports them the same way.
    """

    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Decimal(1)
    unit_price_cents: int
    item_type: LineItemType = LineItemType.SERVICE


class LineItem(BaseModel):
    """Line item as stored. Owned by exactly one invoice."""

    id: UUID
    invoice_id: UUID
    position: int
    description: str
    quantity: Decimal
    unit_price_cents: int
    item_type: LineItemType
    created_at: datetime

    model_config = {"from_attributes": True}

    @property
    def line_total_cents(self) -> int:
        """quantity * unit price, rounded to the cent for display."""
        return round_cents(line_total_cents(self.quantity, self.unit_price_cents))


# =============================================================================
# PAYMENTS
# =============================================================================


class PaymentCreate(BaseModel):
    """A settlement outcome to record against an invoice."""

    amount_cents: int = Field(..., ge=0)
    payment_method: str = Field(..., min_length=1, max_length=50)
    status: PaymentStatus = PaymentStatus.COMPLETED
    transaction_id: str | None = Field(None, max_length=255)
    gateway_order_id: str | None = Field(None, max_length=255)
    failure_reason: str | None = Field(None, max_length=500)


class Payment(BaseModel):
    """Immutable payment record."""

    id: UUID
    invoice_id: UUID
    amount_cents: int
    payment_method: str
    status: PaymentStatus
    transaction_id: str | None
    gateway_order_id: str | None = None
    failure_reason: str | None = None
    processed_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED


# =============================================================================
# INVOICES
# =============================================================================


class InvoiceCreate(BaseModel):
    """Data required to create a draft invoice."""

    client_id: UUID
    project_id: UUID | None = None
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=5000)
    tax_rate: Decimal = Decimal(0)
    due_at: datetime | None = None
    notes: str | None = Field(None, max_length=2000)
    terms: str | None = Field(None, max_length=2000)
    line_items: list[LineItemCreate]

    @field_validator("due_at")
    @classmethod
    def due_at_in_utc(cls, value: datetime | None) -> datetime | None:
        return to_utc(value) if value is not None else None


class InvoiceUpdate(BaseModel):
    """
    Patch for an invoice. All fields optional.

    line_items replaces the full item list. line_items and tax_rate are
    only accepted while the invoice is a draft.
    """

    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, max_length=5000)
    tax_rate: Decimal | None = None
    due_at: datetime | None = None
    notes: str | None = Field(None, max_length=2000)
    terms: str | None = Field(None, max_length=2000)
    line_items: list[LineItemCreate] | None = None

    @field_validator("due_at")
    @classmethod
    def due_at_in_utc(cls, value: datetime | None) -> datetime | None:
        return to_utc(value) if value is not None else None


class InvoiceFilter(BaseModel):
    """Criteria for listing invoices. Unset fields don't filter."""

    client_id: UUID | None = None
    project_id: UUID | None = None
    statuses: list[InvoiceStatus] | None = None
    limit: int = Field(50, ge=1, le=500)
    offset: int = Field(0, ge=0)
    order_by_due: bool = False


class Invoice(BaseModel):
    """Full invoice with its line items and payments attached."""

    id: UUID
    invoice_number: str
    client_id: UUID
    designer_id: UUID | None
    project_id: UUID | None
    title: str
    description: str | None
    status: InvoiceStatus
    subtotal_cents: int
    tax_rate: Decimal
    tax_amount_cents: int
    total_amount_cents: int
    due_at: datetime | None
    sent_at: datetime | None
    paid_at: datetime | None
    cancelled_at: datetime | None
    payment_method: str | None
    payment_reference: str | None
    gateway_order_id: str | None
    notes: str | None
    terms: str | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    payments: list[Payment] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    @property
    def amount_paid_cents(self) -> int:
        """Sum of completed payments."""
        return sum(p.amount_cents for p in self.payments if p.is_completed)

    @property
    def balance_due_cents(self) -> int:
        """Remaining amount to be paid in cents."""
        return max(self.total_amount_cents - self.amount_paid_cents, 0)

    @property
    def total_amount(self) -> str:
        """Total as a 2-decimal string, the form the gateway expects."""
        return format_cents(self.total_amount_cents)

    @property
    def is_paid(self) -> bool:
        """Whether invoice is fully paid."""
        return self.status == InvoiceStatus.PAID

    def completed_payment(self) -> Payment | None:
        """Most recent completed payment, if any."""
        completed = [p for p in self.payments if p.is_completed]
        return completed[-1] if completed else None
