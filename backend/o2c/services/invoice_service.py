# Overview: Service-layer operations for invoices; creation from orders and status lifecycle.

"""
O2C Invoice Workflow

LIFECYCLE (see lifecycle_service.INVOICE_TRANSITIONS):
    DRAFT -> SENT -> PARTIALLY_PAID / PAID / OVERDUE
    open states -> CANCELLED -> VOID, PAID -> VOID

INVARIANTS:
- One invoice per order (unique order_id).
- balance_due = total - paid, except VOID where balance_due is forced to 0.
- Totals are copied from the order at creation unless explicitly overridden
  or recalculated from the customer's jurisdiction.

Payments live in payment_service; this module only moves statuses that do
not involve money coming in.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_

from ..decorators import require_permission
from ..errors import ConflictError, InvalidAmountError, InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Invoice, Order
from ..models.audit import SEVERITY_HIGH, SEVERITY_MEDIUM
from ..models.invoices import (
    INVOICE_STATUS_CANCELLED,
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_SENT,
    INVOICE_STATUS_VOID,
)
from ..models.orders import ORDER_STATUS_CANCELLED
from ..validation import require_cents
from o2c.time_utils import normalize_datetime, utcnow
from . import amounts, audit_service, customer_service, lifecycle_service, tax_service
from .concurrency import begin_write_transaction, lock_for_update
from .pagination import paginate
from .sequence_service import INVOICE_PREFIX, next_business_key


HIGH_SEVERITY_STATUSES = {INVOICE_STATUS_CANCELLED, INVOICE_STATUS_VOID, INVOICE_STATUS_OVERDUE}


def _to_datetime(value, field: str) -> datetime | None:
    try:
        return normalize_datetime(value)
    except ValueError:
        raise ValidationError(f"invalid {field}") from None


# =============================================================================
# Reads
# =============================================================================

def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.query(Invoice).filter_by(id=invoice_id).first()
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found", details={"invoice_id": invoice_id})
    return invoice


def get_invoice_by_number(invoice_number: str) -> Invoice:
    invoice = db.session.query(Invoice).filter_by(invoice_number=(invoice_number or "").strip()).first()
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_number!r} not found", details={"invoice_number": invoice_number})
    return invoice


def list_invoices(
    *,
    customer_id: int | None = None,
    order_id: int | None = None,
    status: str | None = None,
    search: str | None = None,
    issue_date_from=None,
    issue_date_to=None,
    due_date_from=None,
    due_date_to=None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Newest first. Date bounds are inclusive; search matches the invoice number."""
    query = db.session.query(Invoice)
    if customer_id is not None:
        query = query.filter(Invoice.customer_id == customer_id)
    if order_id is not None:
        query = query.filter(Invoice.order_id == order_id)
    if status:
        lifecycle_service.validate_status("INVOICE", status)
        query = query.filter(Invoice.status == status)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Invoice.invoice_number.ilike(like), Invoice.notes.ilike(like)))

    bounds = (
        (Invoice.issue_date, ">=", issue_date_from, "issue_date_from"),
        (Invoice.issue_date, "<=", issue_date_to, "issue_date_to"),
        (Invoice.due_date, ">=", due_date_from, "due_date_from"),
        (Invoice.due_date, "<=", due_date_to, "due_date_to"),
    )
    for column, op, raw, field in bounds:
        value = _to_datetime(raw, field)
        if value is None:
            continue
        query = query.filter(column >= value if op == ">=" else column <= value)

    query = query.order_by(Invoice.issue_date.desc(), Invoice.id.desc())
    return paginate(query, page=page, per_page=per_page)


def days_overdue(invoice: Invoice, as_of: datetime | None = None) -> int:
    """Whole days past due, rounded up; 0 when not yet due or without a due date."""
    if invoice.due_date is None:
        return 0
    as_of = _to_datetime(as_of, "as_of") or utcnow()
    seconds = (as_of - invoice.due_date).total_seconds()
    return max(0, math.ceil(seconds / 86400))


# =============================================================================
# Create
# =============================================================================

def _create_invoice(
    *,
    order_id: int,
    customer_id: int | None,
    due_date,
    issue_date,
    notes: str | None,
    subtotal_cents: int | None,
    tax_amount_cents: int | None,
    total_amount_cents: int | None,
    recalculate_tax: bool,
    actor_id: str | None,
) -> Invoice:
    def _op():
        begin_write_transaction()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})

        target_customer_id = order.customer_id if customer_id is None else customer_id
        customer = customer_service.get_active_customer(target_customer_id)
        if order.customer_id != customer.id:
            raise ConflictError(
                f"Order {order.order_number} does not belong to customer {customer.code}",
                details={"order_id": order.id, "customer_id": customer.id},
            )

        existing = db.session.query(Invoice.id, Invoice.invoice_number).filter_by(order_id=order.id).first()
        if existing is not None:
            raise ConflictError(
                f"Order {order.order_number} already has invoice {existing.invoice_number}",
                details={"order_id": order.id, "invoice_id": existing.id},
            )
        if order.status == ORDER_STATUS_CANCELLED:
            raise InvalidStateError(
                f"Order {order.order_number} is cancelled and can not be invoiced",
                details={"order_id": order.id},
            )

        subtotal = order.subtotal_cents if subtotal_cents is None else require_cents(subtotal_cents, "subtotal_cents")
        if recalculate_tax:
            tax = tax_service.calculate_tax(customer, subtotal)["tax_amount_cents"]
        elif tax_amount_cents is not None:
            tax = require_cents(tax_amount_cents, "tax_amount_cents")
        else:
            tax = order.tax_amount_cents

        if total_amount_cents is not None:
            total = require_cents(total_amount_cents, "total_amount_cents")
        elif recalculate_tax or subtotal_cents is not None or tax_amount_cents is not None:
            total = amounts.order_total_cents(subtotal, tax, order.shipping_cost_cents)
        else:
            total = order.total_amount_cents
        if total <= 0:
            raise InvalidAmountError("Invoice total must be greater than zero", details={"total_amount_cents": total})

        issued = _to_datetime(issue_date, "issue_date") or utcnow()
        due = _to_datetime(due_date, "due_date")
        if due is None:
            due = issued + timedelta(days=current_app.config.get("DEFAULT_PAYMENT_TERMS_DAYS", 30))
        if due < issued:
            raise ValidationError("due_date can not be before issue_date")

        invoice_number = next_business_key(
            prefix=INVOICE_PREFIX,
            year=issued.year,
            pad=current_app.config.get("INVOICE_NUMBER_PAD", 4),
        )
        invoice = Invoice(
            invoice_number=invoice_number,
            order_id=order.id,
            customer_id=customer.id,
            status=INVOICE_STATUS_DRAFT,
            currency=order.currency,
            subtotal_cents=subtotal,
            tax_amount_cents=tax,
            total_amount_cents=total,
            paid_amount_cents=0,
            balance_due_cents=total,
            issue_date=issued,
            due_date=due,
            notes=notes,
            created_by=str(actor_id) if actor_id is not None else None,
        )
        db.session.add(invoice)
        db.session.flush()

        audit_service.record_event(
            event_type="INVOICE_CREATED",
            action="CREATE",
            resource_type="INVOICE",
            resource_id=invoice.id,
            actor_id=actor_id,
            new_values=invoice.to_dict(),
            details={
                "invoice_number": invoice.invoice_number,
                "order_number": order.order_number,
                "customer_id": customer.id,
            },
            severity=SEVERITY_MEDIUM,
        )
        db.session.commit()
        current_app.logger.info("Invoice %s created for order %s", invoice.invoice_number, order.order_number)
        return invoice

    return audit_service.run_recorded(
        _op,
        event_type="INVOICE_CREATE_FAILED",
        action="CREATE",
        resource_type="INVOICE",
        actor_id=actor_id,
        details={"order_id": order_id, "customer_id": customer_id},
    )


@require_permission("INVOICE", "CREATE")
def create_invoice(
    *,
    order_id: int,
    customer_id: int,
    due_date=None,
    issue_date=None,
    notes: str | None = None,
    subtotal_cents: int | None = None,
    tax_amount_cents: int | None = None,
    total_amount_cents: int | None = None,
    recalculate_tax: bool = False,
    actor_id: str | None = None,
) -> Invoice:
    """
    Issue a DRAFT invoice for an order.

    Raises:
        NotFoundError: order missing, customer missing or inactive
        ConflictError: order belongs to another customer, or is already invoiced
        InvalidStateError: order is cancelled
        InvalidAmountError: total not positive
    """
    return _create_invoice(
        order_id=order_id,
        customer_id=customer_id,
        due_date=due_date,
        issue_date=issue_date,
        notes=notes,
        subtotal_cents=subtotal_cents,
        tax_amount_cents=tax_amount_cents,
        total_amount_cents=total_amount_cents,
        recalculate_tax=recalculate_tax,
        actor_id=actor_id,
    )


@require_permission("INVOICE", "CREATE")
def create_invoice_from_order(
    *,
    order_id: int,
    due_date=None,
    notes: str | None = None,
    recalculate_tax: bool = False,
    actor_id: str | None = None,
) -> Invoice:
    """Invoice an order for its own customer with the order's totals."""
    return _create_invoice(
        order_id=order_id,
        customer_id=None,
        due_date=due_date,
        issue_date=None,
        notes=notes,
        subtotal_cents=None,
        tax_amount_cents=None,
        total_amount_cents=None,
        recalculate_tax=recalculate_tax,
        actor_id=actor_id,
    )


# =============================================================================
# Updates
# =============================================================================

def _lock_invoice(invoice_id: int) -> Invoice:
    invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found", details={"invoice_id": invoice_id})
    return invoice


@require_permission("INVOICE", "UPDATE", resource_id_arg="invoice_id")
def update_invoice_details(
    *,
    invoice_id: int,
    notes: str | None = None,
    due_date=None,
    actor_id: str | None = None,
) -> Invoice:
    """Notes and due date of a DRAFT invoice."""
    def _op():
        begin_write_transaction()
        invoice = _lock_invoice(invoice_id)
        if invoice.status != INVOICE_STATUS_DRAFT:
            raise InvalidStateError(
                f"Only DRAFT invoices can be updated; invoice {invoice.invoice_number} is {invoice.status}",
                details={"invoice_id": invoice.id, "status": invoice.status},
            )
        old_values = invoice.to_dict()

        if notes is not None:
            invoice.notes = notes
        if due_date is not None:
            due = _to_datetime(due_date, "due_date")
            if due < invoice.issue_date:
                raise ValidationError("due_date can not be before issue_date")
            invoice.due_date = due
        invoice.updated_by = str(actor_id) if actor_id is not None else None
        db.session.flush()

        audit_service.record_update(
            resource_type="INVOICE",
            resource_id=invoice.id,
            old_values=old_values,
            new_values=invoice.to_dict(),
            actor_id=actor_id,
        )
        db.session.commit()
        return invoice

    return audit_service.run_recorded(
        _op,
        event_type="INVOICE_UPDATE_FAILED",
        action="UPDATE",
        resource_type="INVOICE",
        resource_id=invoice_id,
        actor_id=actor_id,
    )


@require_permission("INVOICE", "UPDATE_STATUS", resource_id_arg="invoice_id")
def update_invoice_status(
    *,
    invoice_id: int,
    status: str,
    notes: str | None = None,
    cancellation_reason: str | None = None,
    actor_id: str | None = None,
) -> Invoice:
    """
    Move an invoice along its lifecycle.

    VOID forces balance_due to 0. Entering OVERDUE also records an
    INVOICE_OVERDUE event with the number of days past due.
    """
    def _op():
        begin_write_transaction()
        invoice = _lock_invoice(invoice_id)
        old_status = invoice.status
        lifecycle_service.require_transition("INVOICE", old_status, status)

        now = utcnow()
        if status == INVOICE_STATUS_SENT:
            invoice.sent_at = now
        elif status == INVOICE_STATUS_PAID:
            invoice.paid_at = now
        elif status == INVOICE_STATUS_OVERDUE:
            invoice.overdue_at = now
        elif status == INVOICE_STATUS_CANCELLED:
            invoice.cancelled_at = now
            invoice.cancellation_reason = cancellation_reason
        elif status == INVOICE_STATUS_VOID:
            invoice.voided_at = now
            invoice.balance_due_cents = 0
            if cancellation_reason:
                invoice.cancellation_reason = cancellation_reason

        invoice.status = status
        if notes is not None:
            invoice.notes = notes
        invoice.updated_by = str(actor_id) if actor_id is not None else None
        db.session.flush()

        audit_service.record_event(
            event_type="INVOICE_STATUS_CHANGED",
            action="UPDATE_STATUS",
            resource_type="INVOICE",
            resource_id=invoice.id,
            actor_id=actor_id,
            old_values={"status": old_status},
            new_values={"status": status, "balance_due_cents": invoice.balance_due_cents},
            details={
                "invoice_number": invoice.invoice_number,
                "notes": notes,
                "cancellation_reason": cancellation_reason,
            },
            severity=SEVERITY_HIGH if status in HIGH_SEVERITY_STATUSES else SEVERITY_MEDIUM,
        )
        if status == INVOICE_STATUS_OVERDUE:
            audit_service.record_event(
                event_type="INVOICE_OVERDUE",
                action="UPDATE_STATUS",
                resource_type="INVOICE",
                resource_id=invoice.id,
                actor_id=actor_id,
                details={
                    "invoice_number": invoice.invoice_number,
                    "due_date": invoice.due_date,
                    "balance_due_cents": invoice.balance_due_cents,
                    "days_overdue": days_overdue(invoice, now),
                },
                severity=SEVERITY_HIGH,
            )
        db.session.commit()
        current_app.logger.info("Invoice %s: %s -> %s", invoice.invoice_number, old_status, status)
        return invoice

    return audit_service.run_recorded(
        _op,
        event_type="INVOICE_STATUS_UPDATE_FAILED",
        action="UPDATE_STATUS",
        resource_type="INVOICE",
        resource_id=invoice_id,
        actor_id=actor_id,
        details={"new_status": status},
    )


def send_invoice(invoice_id: int, *, actor_id: str | None = None) -> Invoice:
    return update_invoice_status(invoice_id=invoice_id, status=INVOICE_STATUS_SENT, actor_id=actor_id)


def void_invoice(invoice_id: int, *, reason: str | None = None, actor_id: str | None = None) -> Invoice:
    return update_invoice_status(
        invoice_id=invoice_id, status=INVOICE_STATUS_VOID, cancellation_reason=reason, actor_id=actor_id
    )
