"""
Jurisdiction tax lookup tests.
"""

from types import SimpleNamespace

import pytest

from o2c.services import tax_service


@pytest.mark.parametrize(
    "country,state,expected_bps",
    [
        ("US", "CA", 875),
        ("US", "NY", 800),
        ("US", "TX", 625),
        ("US", "FL", 600),
        ("US", "WA", 950),
        ("US", "OR", 700),
        (None, None, 700),
        ("us", "ca", 875),
        ("GB", None, 2000),
        ("UK", None, 2000),
        ("CA", "ON", 500),
        ("DE", None, 2000),
        ("FR", None, 2000),
        ("IT", None, 2000),
        ("ES", None, 2000),
        ("JP", None, 0),
    ],
)
def test_rate_by_jurisdiction(country, state, expected_bps):
    assert tax_service.tax_rate_bps_for(country, state) == expected_bps


def test_calculate_tax_for_customer():
    customer = SimpleNamespace(country="US", state="NY")
    assert tax_service.calculate_tax(customer, 45_000) == {
        "tax_rate_bps": 800,
        "tax_amount_cents": 3_600,
    }


def test_untaxed_jurisdiction():
    customer = SimpleNamespace(country="AU", state=None)
    assert tax_service.calculate_tax(customer, 45_000)["tax_amount_cents"] == 0
