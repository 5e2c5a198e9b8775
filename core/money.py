"""
Invoice total calculation.

Pure functions, no I/O. Amounts are integer cents; quantities and tax rate
are Decimals. Rounding is half-up to the cent and happens exactly twice:
once on the subtotal (sum of exact line products) and once on the tax.
The total is the sum of those two rounded values and is never rounded
again, so subtotal + tax always equals total to the penny.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable

from core.exceptions import InvalidAmountError

_ONE = Decimal("1")
_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class InvoiceTotals:
    """Computed financial fields of an invoice, in cents."""
    subtotal_cents: int
    tax_amount_cents: int
    total_amount_cents: int


def _to_decimal(value, name: str) -> Decimal:
    if isinstance(value, float):
        # floats go through str() so 0.1 stays 0.1
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountError(f"{name} is not a number: {value!r}")
    if not result.is_finite():
        raise InvalidAmountError(f"{name} must be finite: {value!r}")
    return result


def round_cents(value: Decimal) -> int:
    """Round a Decimal amount of cents half-up to a whole cent."""
    return int(value.quantize(_ONE, rounding=ROUND_HALF_UP))


def line_total_cents(quantity, unit_price_cents) -> Decimal:
    """
    Exact (unrounded) line total in cents.

    Raises:
        InvalidAmountError: quantity <= 0 or unit price < 0
    """
    qty = _to_decimal(quantity, "quantity")
    price = _to_decimal(unit_price_cents, "unit_price_cents")
    if qty <= 0:
        raise InvalidAmountError(f"quantity must be positive, got {qty}")
    if price < 0:
        raise InvalidAmountError(f"unit price cannot be negative, got {price}")
    return qty * price


def compute_totals(items: Iterable[tuple], tax_rate) -> InvoiceTotals:
    """
    Compute subtotal, tax and total for a set of line items.

    Args:
        items: (quantity, unit_price_cents) pairs, in invoice order
        tax_rate: Tax percentage (8 = 8%)

    Returns:
        InvoiceTotals in cents

    Raises:
        InvalidAmountError: On any non-positive quantity, negative price
            or negative tax rate
    """
    rate = _to_decimal(tax_rate, "tax_rate")
    if rate < 0:
        raise InvalidAmountError(f"tax_rate cannot be negative, got {rate}")

    exact = sum(
        (line_total_cents(quantity, price) for quantity, price in items),
        Decimal(0),
    )
    subtotal = round_cents(exact)
    tax = round_cents(Decimal(subtotal) * rate / _HUNDRED)

    return InvoiceTotals(
        subtotal_cents=subtotal,
        tax_amount_cents=tax,
        total_amount_cents=subtotal + tax,
    )


def format_cents(cents: int) -> str:
    """Format cents as a 2-decimal string: 43092 -> '430.92'."""
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole}.{frac:02d}"


def parse_amount(value: str) -> int:
    """
    Parse a decimal amount string into cents: '430.92' -> 43092.

    Raises:
        InvalidAmountError: If value is not a number or has sub-cent precision
    """
    amount = _to_decimal(value, "amount") * _HUNDRED
    if amount != amount.to_integral_value():
        raise InvalidAmountError(f"amount has more than 2 decimal places: {value!r}")
    return int(amount)
