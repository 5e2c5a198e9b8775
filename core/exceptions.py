"""Typed exceptions for invoice and settlement failures."""


class InvoiceError(Exception):
    """Base class for invoicing errors."""


class InvalidAmountError(InvoiceError):
    """A line item or tax rate is not a valid monetary input."""


class InvoiceNotFoundError(InvoiceError):
    """Invoice does not exist (or was deleted)."""

    def __init__(self, invoice_id):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} not found")


class ImmutableFieldError(InvoiceError):
    """
    Attempt to change a field frozen by the invoice's status.

    Line items and tax rate freeze once an invoice leaves DRAFT.
    """

    def __init__(self, invoice_id, fields: list[str]):
        self.invoice_id = invoice_id
        self.fields = fields
        super().__init__(
            f"Invoice {invoice_id} is no longer a draft; "
            f"cannot change: {', '.join(fields)}"
        )


class InvalidStateError(InvoiceError):
    """Operation not permitted in the invoice's current status."""


class InvalidTransitionError(InvoiceError):
    """Status transition is not allowed by the invoice lifecycle."""

    def __init__(self, invoice_id, current, target):
        self.invoice_id = invoice_id
        self.current = current
        self.target = target
        super().__init__(
            f"Invoice {invoice_id} cannot move from '{current}' to '{target}'"
        )


class DuplicateInvoiceNumberError(InvoiceError):
    """Invoice number collided with an existing (or deleted) invoice."""


class PaymentFailedError(InvoiceError):
    """
    Gateway reported a non-recoverable failure.

    The invoice is left untouched. debug_id is the gateway's reference
    for support escalation.
    """

    def __init__(self, message: str, debug_id: str | None = None, issue: str | None = None):
        self.debug_id = debug_id
        self.issue = issue
        super().__init__(message)
