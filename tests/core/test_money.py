"""Tests for invoice total calculation."""

from decimal import Decimal

import pytest

from core.exceptions import InvalidAmountError
from core.money import (
    InvoiceTotals,
    compute_totals,
    format_cents,
    line_total_cents,
    parse_amount,
    round_cents,
)


class TestComputeTotals:

    def test_logo_and_revisions_with_tax(self):
        """1 x 299.00 + 2 x 50.00 at 8% -> 399.00 / 31.92 / 430.92."""
        totals = compute_totals([(1, 29900), (2, 5000)], Decimal("8"))

        assert totals == InvoiceTotals(
            subtotal_cents=39900,
            tax_amount_cents=3192,
            total_amount_cents=43092,
        )

    def test_zero_tax(self):
        totals = compute_totals([(3, 1000)], 0)

        assert totals.subtotal_cents == 3000
        assert totals.tax_amount_cents == 0
        assert totals.total_amount_cents == 3000

    def test_total_is_subtotal_plus_tax(self):
        """No independent rounding of the total."""
        totals = compute_totals([(Decimal("1.5"), 333), (Decimal("0.25"), 999)], Decimal("8.25"))

        assert totals.total_amount_cents == totals.subtotal_cents + totals.tax_amount_cents

    def test_tax_rounds_half_up(self):
        """1050 * 5% = 52.5 cents -> 53."""
        totals = compute_totals([(1, 1050)], 5)

        assert totals.tax_amount_cents == 53

    def test_fractional_quantity_rounds_subtotal_once(self):
        """Line products are summed exactly, then rounded: 0.5*1 + 0.5*1 = 1, not 2."""
        totals = compute_totals([(Decimal("0.5"), 1), (Decimal("0.5"), 1)], 0)

        assert totals.subtotal_cents == 1

    def test_float_tax_rate_is_exact(self):
        """Floats go through their string form."""
        totals = compute_totals([(1, 10000)], 8.1)

        assert totals.tax_amount_cents == 810

    def test_free_line_allowed(self):
        totals = compute_totals([(1, 0)], 8)

        assert totals.total_amount_cents == 0

    @pytest.mark.parametrize("quantity", [0, -1, Decimal("-0.5")])
    def test_rejects_non_positive_quantity(self, quantity):
        with pytest.raises(InvalidAmountError, match="quantity"):
            compute_totals([(quantity, 1000)], 0)

    def test_rejects_negative_price(self):
        with pytest.raises(InvalidAmountError, match="unit price"):
            compute_totals([(1, -1)], 0)

    def test_rejects_negative_tax_rate(self):
        with pytest.raises(InvalidAmountError, match="tax_rate"):
            compute_totals([(1, 1000)], -1)

    def test_rejects_non_numeric_values(self):
        with pytest.raises(InvalidAmountError):
            compute_totals([("lots", 1000)], 0)

    def test_rejects_nan(self):
        with pytest.raises(InvalidAmountError, match="finite"):
            compute_totals([(1, 1000)], Decimal("NaN"))


class TestLineTotal:

    def test_exact_product(self):
        assert line_total_cents(Decimal("1.5"), 333) == Decimal("499.5")

    def test_round_cents_half_up(self):
        assert round_cents(Decimal("499.5")) == 500
        assert round_cents(Decimal("499.4")) == 499


class TestFormatting:

    def test_format_cents(self):
        assert format_cents(43092) == "430.92"
        assert format_cents(5) == "0.05"
        assert format_cents(100) == "1.00"

    def test_parse_amount(self):
        assert parse_amount("430.92") == 43092
        assert parse_amount("1") == 100

    def test_parse_rejects_sub_cent(self):
        with pytest.raises(InvalidAmountError, match="2 decimal places"):
            parse_amount("1.005")

    def test_parse_rejects_garbage(self):
        with pytest.raises(InvalidAmountError):
            parse_amount("abc")
