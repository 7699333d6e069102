# Overview: Pure money arithmetic for order lines, totals and balances.

"""
Ledger primitives.

All money is integer cents and tax rates are integer basis points
(1000 bps = 10%). Nothing in this module touches the database, so the same
functions back the services, validate_order() and the tests.

Rounding: tax is rounded half-up to the nearest cent, the same rule the
totals on printed documents use.
"""

from __future__ import annotations

from typing import Iterable

from ..errors import InvalidAmountError
from ..validation import require_cents, require_int


# Two amounts closer than this are considered equal (1 cent)
AMOUNT_TOLERANCE_CENTS = 1

BPS_DENOMINATOR = 10_000


def line_total_cents(quantity: int, unit_price_cents: int, discount_cents: int = 0) -> int:
    """quantity * unit_price - discount; negative results are rejected."""
    quantity = require_int(quantity, "quantity")
    if quantity <= 0:
        raise InvalidAmountError("quantity must be positive", details={"quantity": quantity})
    unit_price_cents = require_cents(unit_price_cents, "unit_price_cents")
    discount_cents = require_cents(discount_cents or 0, "discount_cents")

    total = quantity * unit_price_cents - discount_cents
    if total < 0:
        raise InvalidAmountError(
            "discount exceeds line amount",
            details={"quantity": quantity, "unit_price_cents": unit_price_cents, "discount_cents": discount_cents},
        )
    return total


def subtotal_cents(items: Iterable) -> int:
    """
    Sum of line totals.

    Accepts OrderItem rows or dicts with quantity / unit_price_cents /
    discount_cents keys.
    """
    total = 0
    for item in items:
        if isinstance(item, dict):
            total += line_total_cents(
                item.get("quantity"),
                item.get("unit_price_cents"),
                item.get("discount_cents") or 0,
            )
        else:
            total += line_total_cents(item.quantity, item.unit_price_cents, item.discount_cents or 0)
    return total


def tax_amount_cents(subtotal: int, tax_rate_bps: int | None = None) -> int:
    subtotal = require_int(subtotal, "subtotal_cents")
    rate = require_int(tax_rate_bps or 0, "tax_rate_bps")
    if rate < 0:
        raise InvalidAmountError("tax_rate_bps must be non-negative", details={"tax_rate_bps": rate})
    if subtotal <= 0 or rate == 0:
        return 0
    # Half-up integer rounding
    return (subtotal * rate + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR


def order_total_cents(subtotal: int, tax: int, shipping: int = 0) -> int:
    return subtotal + tax + (shipping or 0)


def balance_due_cents(total: int, paid: int) -> int:
    return total - paid


def amounts_match(a: int, b: int, *, tolerance: int = AMOUNT_TOLERANCE_CENTS) -> bool:
    return abs(a - b) <= tolerance


def format_cents(cents: int, currency: str = "USD") -> str:
    """Human-readable rendering for logs and CLI output: 49500 -> '495.00 USD'."""
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole}.{frac:02d} {currency}"
