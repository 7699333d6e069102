# Overview: Status state machines for orders and invoices.

"""
O2C Document Lifecycles

================================================================================
ORDER:    DRAFT -> CONFIRMED -> SHIPPED -> DELIVERED
          DRAFT | CONFIRMED -> CANCELLED

INVOICE:  DRAFT -> SENT -> PARTIALLY_PAID / PAID / OVERDUE
          any open state -> CANCELLED -> VOID
          PAID -> VOID
================================================================================

RULES:
1. A transition not listed in the table is refused, including skipping ahead
   (DRAFT -> SHIPPED) and moving backwards (SHIPPED -> CONFIRMED).
2. DELIVERED, CANCELLED (orders) and VOID (invoices) are terminal.
3. PARTIALLY_PAID -> PARTIALLY_PAID is the only self-transition; it is what a
   second partial payment looks like.
4. Side effects of a transition (timestamps, stock release, balance reset)
   live in the owning service, not here.
"""

from __future__ import annotations

from ..errors import InvalidTransitionError, ValidationError
from ..models.invoices import (
    INVOICE_STATUS_CANCELLED,
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_PARTIALLY_PAID,
    INVOICE_STATUS_SENT,
    INVOICE_STATUS_VOID,
)
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_DRAFT,
    ORDER_STATUS_SHIPPED,
)


ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    ORDER_STATUS_DRAFT: frozenset({ORDER_STATUS_CONFIRMED, ORDER_STATUS_CANCELLED}),
    ORDER_STATUS_CONFIRMED: frozenset({ORDER_STATUS_SHIPPED, ORDER_STATUS_CANCELLED}),
    ORDER_STATUS_SHIPPED: frozenset({ORDER_STATUS_DELIVERED}),
    ORDER_STATUS_DELIVERED: frozenset(),
    ORDER_STATUS_CANCELLED: frozenset(),
}

INVOICE_TRANSITIONS: dict[str, frozenset[str]] = {
    INVOICE_STATUS_DRAFT: frozenset({INVOICE_STATUS_SENT, INVOICE_STATUS_CANCELLED, INVOICE_STATUS_VOID}),
    INVOICE_STATUS_SENT: frozenset({
        INVOICE_STATUS_PARTIALLY_PAID,
        INVOICE_STATUS_PAID,
        INVOICE_STATUS_OVERDUE,
        INVOICE_STATUS_CANCELLED,
        INVOICE_STATUS_VOID,
    }),
    INVOICE_STATUS_PARTIALLY_PAID: frozenset({
        INVOICE_STATUS_PARTIALLY_PAID,
        INVOICE_STATUS_PAID,
        INVOICE_STATUS_OVERDUE,
        INVOICE_STATUS_CANCELLED,
        INVOICE_STATUS_VOID,
    }),
    INVOICE_STATUS_PAID: frozenset({INVOICE_STATUS_VOID}),
    INVOICE_STATUS_OVERDUE: frozenset({
        INVOICE_STATUS_PARTIALLY_PAID,
        INVOICE_STATUS_PAID,
        INVOICE_STATUS_CANCELLED,
        INVOICE_STATUS_VOID,
    }),
    INVOICE_STATUS_CANCELLED: frozenset({INVOICE_STATUS_VOID}),
    INVOICE_STATUS_VOID: frozenset(),
}

VALID_ORDER_STATUSES = frozenset(ORDER_TRANSITIONS)
VALID_INVOICE_STATUSES = frozenset(INVOICE_TRANSITIONS)

_TABLES = {
    "ORDER": ORDER_TRANSITIONS,
    "INVOICE": INVOICE_TRANSITIONS,
}


def _table_for(document_type: str) -> dict[str, frozenset[str]]:
    try:
        return _TABLES[document_type]
    except KeyError:
        raise ValidationError(f"Unknown document type '{document_type}'") from None


def validate_status(document_type: str, status: str) -> None:
    """Raise ValidationError if status is not a known state for document_type."""
    table = _table_for(document_type)
    if status not in table:
        raise ValidationError(
            f"Invalid {document_type.lower()} status '{status}'. "
            f"Must be one of: {', '.join(sorted(table))}"
        )


def can_transition(document_type: str, from_status: str, to_status: str) -> bool:
    table = _table_for(document_type)
    return to_status in table.get(from_status, frozenset())


def allowed_transitions(document_type: str, from_status: str) -> list[str]:
    return sorted(_table_for(document_type).get(from_status, frozenset()))


def is_terminal(document_type: str, status: str) -> bool:
    return not _table_for(document_type).get(status)


def require_transition(document_type: str, from_status: str, to_status: str) -> None:
    """
    Enforce the transition table.

    Raises:
        ValidationError: to_status is not a status at all
        InvalidTransitionError: the move is not listed for from_status
    """
    validate_status(document_type, to_status)
    if not can_transition(document_type, from_status, to_status):
        raise InvalidTransitionError(
            f"Cannot change {document_type.lower()} status from {from_status} to {to_status}",
            details={
                "from_status": from_status,
                "to_status": to_status,
                "allowed": allowed_transitions(document_type, from_status),
            },
        )
