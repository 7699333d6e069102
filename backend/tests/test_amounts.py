"""
Ledger primitive tests: line totals, tax rounding, tolerance.
"""

import pytest

from o2c.errors import InvalidAmountError
from o2c.services import amounts


class TestLineTotal:
    def test_quantity_times_price(self):
        assert amounts.line_total_cents(2, 10_000) == 20_000

    def test_discount_is_subtracted(self):
        assert amounts.line_total_cents(3, 1_000, 250) == 2_750

    def test_discount_equal_to_gross_is_zero(self):
        assert amounts.line_total_cents(1, 500, 500) == 0

    @pytest.mark.parametrize(
        "quantity,unit_price,discount",
        [
            (0, 1_000, 0),
            (-1, 1_000, 0),
            (1, -1, 0),
            (1, 1_000, -5),
            (1, 1_000, 1_001),
        ],
    )
    def test_rejects_invalid_inputs(self, quantity, unit_price, discount):
        with pytest.raises(InvalidAmountError):
            amounts.line_total_cents(quantity, unit_price, discount)

    @pytest.mark.parametrize("quantity", [1.5, "2", True, None])
    def test_quantity_must_be_integer(self, quantity):
        with pytest.raises(InvalidAmountError):
            amounts.line_total_cents(quantity, 1_000)


class TestTotals:
    def test_subtotal_from_dicts(self):
        items = [
            {"quantity": 2, "unit_price_cents": 10_000},
            {"quantity": 1, "unit_price_cents": 25_000, "discount_cents": 0},
        ]
        assert amounts.subtotal_cents(items) == 45_000

    def test_subtotal_of_nothing_is_zero(self):
        assert amounts.subtotal_cents([]) == 0

    def test_ten_percent_tax(self):
        assert amounts.tax_amount_cents(45_000, 1000) == 4_500

    def test_tax_rounds_half_up(self):
        # 5 cents at 10% = 0.5 cent -> 1
        assert amounts.tax_amount_cents(5, 1000) == 1
        # 4 cents at 10% = 0.4 cent -> 0
        assert amounts.tax_amount_cents(4, 1000) == 0
        # 450.00 at 8.75% = 39.375 -> 39.38
        assert amounts.tax_amount_cents(45_000, 875) == 3_938

    def test_missing_rate_means_no_tax(self):
        assert amounts.tax_amount_cents(45_000) == 0
        assert amounts.tax_amount_cents(45_000, None) == 0

    def test_negative_rate_rejected(self):
        with pytest.raises(InvalidAmountError):
            amounts.tax_amount_cents(45_000, -1)

    def test_order_total(self):
        assert amounts.order_total_cents(45_000, 4_500, 0) == 49_500
        assert amounts.order_total_cents(45_000, 4_500, 1_250) == 50_750

    def test_balance_due(self):
        assert amounts.balance_due_cents(49_500, 20_000) == 29_500


class TestTolerance:
    def test_one_cent_apart_matches(self):
        assert amounts.amounts_match(10_000, 10_001)
        assert amounts.amounts_match(10_001, 10_000)

    def test_two_cents_apart_does_not_match(self):
        assert not amounts.amounts_match(10_000, 10_002)


def test_format_cents():
    assert amounts.format_cents(49_500, "USD") == "495.00 USD"
    assert amounts.format_cents(-5, "EUR") == "-0.05 EUR"
