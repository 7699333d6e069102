from __future__ import annotations

from ..extensions import db
from o2c.time_utils import to_utc_z


INVOICE_STATUS_DRAFT = "DRAFT"
INVOICE_STATUS_SENT = "SENT"
INVOICE_STATUS_PARTIALLY_PAID = "PARTIALLY_PAID"
INVOICE_STATUS_PAID = "PAID"
INVOICE_STATUS_OVERDUE = "OVERDUE"
INVOICE_STATUS_CANCELLED = "CANCELLED"
INVOICE_STATUS_VOID = "VOID"

PAYMENT_STATUS_COMPLETED = "COMPLETED"


class Invoice(db.Model):
    """
    Invoice issued against exactly one order.

    balance_due_cents == total_amount_cents - paid_amount_cents, except once
    the invoice is VOID, where balance_due_cents is forced to 0.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        db.UniqueConstraint("order_id", name="uq_invoices_order_id"),
        db.CheckConstraint("paid_amount_cents >= 0", name="ck_invoices_paid_nonnegative"),
        db.CheckConstraint("balance_due_cents >= 0", name="ck_invoices_balance_nonnegative"),
        db.Index("ix_invoices_customer_status", "customer_id", "status"),
        db.Index("ix_invoices_status_due", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable business key (e.g., "INV-2026-0001")
    invoice_number = db.Column(db.String(32), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_STATUS_DRAFT, index=True)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    # Amounts (all in cents)
    subtotal_cents = db.Column(db.BigInteger, nullable=False, default=0)
    tax_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_amount_cents = db.Column(db.BigInteger, nullable=False)
    paid_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    balance_due_cents = db.Column(db.BigInteger, nullable=False)

    issue_date = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    # Timestamps per status
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    overdue_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    updated_by = db.Column(db.String(64), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("invoice", uselist=False, lazy=True))
    customer = db.relationship("Customer", backref=db.backref("invoices", lazy=True))
    payments = db.relationship(
        "Payment",
        back_populates="invoice",
        order_by="Payment.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "currency": self.currency,
            "subtotal_cents": self.subtotal_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "balance_due_cents": self.balance_due_cents,
            "issue_date": to_utc_z(self.issue_date),
            "due_date": to_utc_z(self.due_date) if self.due_date else None,
            "notes": self.notes,
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "sent_at": to_utc_z(self.sent_at) if self.sent_at else None,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "overdue_at": to_utc_z(self.overdue_at) if self.overdue_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "version_id": self.version_id,
        }


class Payment(db.Model):
    """
    Payment applied to an invoice.

    DESIGN: Payments are separate rows (many-to-one) so an invoice can be
    settled in several partial payments. The invoice keeps the running
    paid/balance figures; this table is the source they are recomputed from.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    amount_cents = db.Column(db.BigInteger, nullable=False)
    method = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_COMPLETED, index=True)

    payment_date = db.Column(db.DateTime(timezone=True), nullable=False)

    # Check number, wire confirmation, card auth code...
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "status": self.status,
            "payment_date": to_utc_z(self.payment_date),
            "reference": self.reference,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
