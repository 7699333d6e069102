# Overview: Service-layer operations for invoice payments.

"""
Invoice Payments

WHY: An invoice may be settled in several partial payments. Each payment is
its own row; the invoice's paid/balance figures are recomputed from the
COMPLETED payment rows every time, never incremented in place.

RULES:
- Payments are accepted only while the invoice is SENT, PARTIALLY_PAID or OVERDUE.
- amount must be a positive integer number of cents.
- amount may not exceed the current balance due (no overpayment, no credit
  balances).
- balance 0 -> PAID (paid_at stamped), otherwise PARTIALLY_PAID.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..decorators import require_permission
from ..errors import InvalidAmountError, InvalidStateError, NotFoundError, OverpaymentError, ValidationError
from ..extensions import db
from ..models import Invoice, Payment
from ..models.audit import SEVERITY_HIGH
from ..models.invoices import (
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_PARTIALLY_PAID,
    INVOICE_STATUS_SENT,
    PAYMENT_STATUS_COMPLETED,
)
from ..validation import require_int
from o2c.time_utils import normalize_datetime, to_utc_z, utcnow
from . import amounts, audit_service, lifecycle_service
from .concurrency import begin_write_transaction, lock_for_update


PAYMENT_METHODS = {
    "CASH",
    "CHECK",
    "CREDIT_CARD",
    "DEBIT_CARD",
    "BANK_TRANSFER",
    "WIRE_TRANSFER",
    "OTHER",
}

PAYABLE_STATUSES = {INVOICE_STATUS_SENT, INVOICE_STATUS_PARTIALLY_PAID, INVOICE_STATUS_OVERDUE}


def _completed_total(invoice_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.invoice_id == invoice_id, Payment.status == PAYMENT_STATUS_COMPLETED)
        .scalar()
    )
    return int(total or 0)


@require_permission("INVOICE", "ADD_PAYMENT", resource_id_arg="invoice_id")
def add_payment(
    *,
    invoice_id: int,
    amount_cents: int,
    method: str,
    payment_date=None,
    reference: str | None = None,
    notes: str | None = None,
    actor_id: str | None = None,
) -> Payment:
    """
    Apply a payment to an invoice.

    Raises:
        NotFoundError: invoice missing
        InvalidStateError: invoice not SENT / PARTIALLY_PAID / OVERDUE
        InvalidAmountError: amount not a positive integer
        OverpaymentError: amount above the balance due
        ValidationError: unknown payment method or bad payment_date
    """
    def _op():
        begin_write_transaction()
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", details={"invoice_id": invoice_id})

        if invoice.status not in PAYABLE_STATUSES:
            raise InvalidStateError(
                f"Payments can not be added to invoice {invoice.invoice_number} in status {invoice.status}",
                details={"invoice_id": invoice.id, "status": invoice.status},
            )

        amount = require_int(amount_cents, "amount_cents")
        if amount <= 0:
            raise InvalidAmountError("Payment amount must be greater than zero", details={"amount_cents": amount})
        if amount > invoice.balance_due_cents:
            raise OverpaymentError(
                f"Payment exceeds balance due on invoice {invoice.invoice_number}",
                details={"amount_cents": amount, "balance_due_cents": invoice.balance_due_cents},
            )

        normalized_method = (method or "").strip().upper()
        if normalized_method not in PAYMENT_METHODS:
            raise ValidationError(
                f"Invalid payment method '{method}'",
                details={"allowed": sorted(PAYMENT_METHODS)},
            )
        try:
            paid_on = normalize_datetime(payment_date) or utcnow()
        except ValueError:
            raise ValidationError("invalid payment_date") from None

        old_values = {
            "status": invoice.status,
            "paid_amount_cents": invoice.paid_amount_cents,
            "balance_due_cents": invoice.balance_due_cents,
        }

        payment = Payment(
            invoice_id=invoice.id,
            amount_cents=amount,
            method=normalized_method,
            status=PAYMENT_STATUS_COMPLETED,
            payment_date=paid_on,
            reference=reference,
            notes=notes,
            created_by=str(actor_id) if actor_id is not None else None,
        )
        db.session.add(payment)
        db.session.flush()

        paid = _completed_total(invoice.id)
        balance = amounts.balance_due_cents(invoice.total_amount_cents, paid)
        new_status = INVOICE_STATUS_PAID if balance == 0 else INVOICE_STATUS_PARTIALLY_PAID
        lifecycle_service.require_transition("INVOICE", invoice.status, new_status)

        invoice.paid_amount_cents = paid
        invoice.balance_due_cents = balance
        invoice.status = new_status
        if new_status == INVOICE_STATUS_PAID:
            invoice.paid_at = utcnow()
        invoice.updated_by = str(actor_id) if actor_id is not None else None
        db.session.flush()

        audit_service.record_event(
            event_type="PAYMENT_RECEIVED",
            action="ADD_PAYMENT",
            resource_type="INVOICE",
            resource_id=invoice.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values={
                "status": new_status,
                "paid_amount_cents": paid,
                "balance_due_cents": balance,
            },
            details={
                "invoice_number": invoice.invoice_number,
                "payment_id": payment.id,
                "amount_cents": amount,
                "method": normalized_method,
                "reference": reference,
            },
            severity=SEVERITY_HIGH,
        )
        if new_status == INVOICE_STATUS_PAID:
            payment_count = (
                db.session.query(Payment.id)
                .filter(Payment.invoice_id == invoice.id, Payment.status == PAYMENT_STATUS_COMPLETED)
                .count()
            )
            audit_service.record_event(
                event_type="INVOICE_FULLY_PAID",
                action="ADD_PAYMENT",
                resource_type="INVOICE",
                resource_id=invoice.id,
                actor_id=actor_id,
                details={
                    "invoice_number": invoice.invoice_number,
                    "total_amount_cents": invoice.total_amount_cents,
                    "payment_count": payment_count,
                },
                severity=SEVERITY_HIGH,
            )
        db.session.commit()
        current_app.logger.info(
            "Payment %s applied to invoice %s (%s)",
            amounts.format_cents(amount, invoice.currency), invoice.invoice_number, new_status,
        )
        return payment

    return audit_service.run_recorded(
        _op,
        event_type="PAYMENT_FAILED",
        action="ADD_PAYMENT",
        resource_type="INVOICE",
        resource_id=invoice_id,
        actor_id=actor_id,
        details={"amount_cents": amount_cents, "method": method},
    )


def list_payments(invoice_id: int) -> list[Payment]:
    if db.session.query(Invoice.id).filter_by(id=invoice_id).first() is None:
        raise NotFoundError(f"Invoice {invoice_id} not found", details={"invoice_id": invoice_id})
    return (
        db.session.query(Payment)
        .filter(Payment.invoice_id == invoice_id)
        .order_by(Payment.payment_date.asc(), Payment.id.asc())
        .all()
    )


def get_payment_summary(invoice_id: int) -> dict:
    """Totals for one invoice, with a per-method breakdown of completed payments."""
    invoice = db.session.query(Invoice).filter_by(id=invoice_id).first()
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found", details={"invoice_id": invoice_id})

    payments = [p for p in list_payments(invoice_id) if p.status == PAYMENT_STATUS_COMPLETED]
    by_method: dict[str, int] = {}
    for payment in payments:
        by_method[payment.method] = by_method.get(payment.method, 0) + payment.amount_cents

    last_payment = max((p.payment_date for p in payments), default=None)
    return {
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "status": invoice.status,
        "currency": invoice.currency,
        "total_amount_cents": invoice.total_amount_cents,
        "paid_amount_cents": invoice.paid_amount_cents,
        "balance_due_cents": invoice.balance_due_cents,
        "payment_count": len(payments),
        "by_method": by_method,
        "last_payment_date": to_utc_z(last_payment) if last_payment else None,
    }
