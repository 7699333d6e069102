from __future__ import annotations

import re

from .errors import InvalidAmountError, ValidationError


# Maximum single amount: $999,999,999.99
# This prevents database overflow issues and nonsensical totals
MAX_AMOUNT_CENTS = 99_999_999_999

CUSTOMER_CODE_RE = re.compile(r"^[A-Z0-9-]{3,10}$")
CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_customer_code(code: str | None) -> str:
    stripped = (code or "").strip()
    if not CUSTOMER_CODE_RE.match(stripped):
        raise ValidationError("Customer code must be 3-10 characters of A-Z, 0-9 or '-'")
    return stripped


def normalize_currency(currency: str | None) -> str:
    normalized = (currency or "").strip().upper()
    if not CURRENCY_RE.match(normalized):
        raise ValidationError("Currency must be a 3-letter ISO code")
    return normalized


def normalize_email(email: str | None) -> str:
    normalized = (email or "").strip().lower()
    if not EMAIL_RE.match(normalized):
        raise ValidationError("Invalid email format")
    return normalized


def require_int(value, field: str) -> int:
    """
    Strict integer check for quantities and cent amounts.

    Rejects bools, floats and numeric strings: amounts travel as integer
    minor units end to end, so a float here means a caller skipped conversion.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError(f"{field} must be an integer", details={"field": field})
    return value


def require_cents(value, field: str, *, allow_zero: bool = True) -> int:
    cents = require_int(value, field)
    if cents < 0 or (cents == 0 and not allow_zero):
        qualifier = "non-negative" if allow_zero else "positive"
        raise InvalidAmountError(f"{field} must be {qualifier}", details={"field": field, "value": cents})
    if cents > MAX_AMOUNT_CENTS:
        raise InvalidAmountError(f"{field} exceeds maximum allowed amount", details={"field": field})
    return cents
