# Overview: Best-effort jurisdiction tax lookup for invoices.

"""
Jurisdiction tax rates (basis points).

This is a static table, not a tax engine: it covers the jurisdictions the
business invoices into today and falls back to 0 for everything else.
Orders carry an explicit tax_rate_bps; this lookup is only applied when an
invoice is created with recalculate_tax=True.
"""

from __future__ import annotations

from .amounts import tax_amount_cents


DEFAULT_COUNTRY = "US"

US_STATE_RATES_BPS = {
    "CA": 875,
    "NY": 800,
    "TX": 625,
    "FL": 600,
    "WA": 950,
}
US_DEFAULT_RATE_BPS = 700

COUNTRY_RATES_BPS = {
    "GB": 2000,
    "UK": 2000,
    "CA": 500,
    "DE": 2000,
    "FR": 2000,
    "IT": 2000,
    "ES": 2000,
}


def tax_rate_bps_for(country: str | None, state: str | None = None) -> int:
    """Rate for a jurisdiction; a missing country is treated as US."""
    country = (country or DEFAULT_COUNTRY).strip().upper() or DEFAULT_COUNTRY
    if country == "US":
        return US_STATE_RATES_BPS.get((state or "").strip().upper(), US_DEFAULT_RATE_BPS)
    return COUNTRY_RATES_BPS.get(country, 0)


def calculate_tax(customer, subtotal_cents: int) -> dict:
    """
    Tax for a subtotal billed to customer.

    Returns:
        {"tax_rate_bps": int, "tax_amount_cents": int}
    """
    rate = tax_rate_bps_for(customer.country, customer.state)
    return {
        "tax_rate_bps": rate,
        "tax_amount_cents": tax_amount_cents(subtotal_cents, rate),
    }
