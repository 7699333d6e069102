# Overview: Typed business failures raised by the order-to-cash services.

"""
O2C error taxonomy.

Every failure a service raises on purpose is an O2CError subclass. Callers at
the boundary translate them with `kind` and `http_status`; `details` holds
structured context (ids, amounts) that is safe to show to an operator.

Messages are built from business values only. Never put connection strings,
SQL fragments, or credentials into a message or its details.
"""

from __future__ import annotations


class O2CError(ValueError):
    """Base class for order-to-cash business failures."""
    kind = "Error"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(O2CError):
    """400-level input problem (malformed code, currency, email, empty item list)."""
    kind = "Validation"


class InvalidAmountError(O2CError):
    """Malformed or out-of-range numeric input."""
    kind = "InvalidAmount"


class InvalidStateError(O2CError):
    """Operation not permitted in the entity's current status."""
    kind = "InvalidState"
    http_status = 409


class InvalidTransitionError(InvalidStateError):
    """Requested status change is not in the transition table."""
    kind = "InvalidTransition"


class NotFoundError(O2CError):
    """Referenced entity absent, or inactive where activity is required."""
    kind = "NotFound"
    http_status = 404


class ConflictError(O2CError):
    """409-level business rule conflict (duplicate code/email, second invoice for an order)."""
    kind = "Conflict"
    http_status = 409


class CreditExceededError(O2CError):
    kind = "CreditExceeded"
    http_status = 422


class InsufficientStockError(O2CError):
    kind = "InsufficientStock"
    http_status = 409


class OverpaymentError(O2CError):
    kind = "Overpayment"
    http_status = 422


class PermissionDeniedError(O2CError):
    """Raised by the authorization gate before an operation starts."""
    kind = "PermissionDenied"
    http_status = 403
