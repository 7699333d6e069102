from __future__ import annotations

from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from o2c.time_utils import to_utc_z


CUSTOMER_STATUS_ACTIVE = "ACTIVE"
CUSTOMER_STATUS_INACTIVE = "INACTIVE"
CUSTOMER_STATUS_SUSPENDED = "SUSPENDED"

VALID_CUSTOMER_STATUSES = {
    CUSTOMER_STATUS_ACTIVE,
    CUSTOMER_STATUS_INACTIVE,
    CUSTOMER_STATUS_SUSPENDED,
}


class Customer(db.Model):
    """
    Customer master data for billing and credit control.

    Business keys: code and email are both unique. is_active is derived from
    status and is never stored on its own, so a SUSPENDED customer can not be
    "active" by accident.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_customers_code"),
        db.UniqueConstraint("email", name="uq_customers_email"),
        db.Index("ix_customers_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    code = db.Column(db.String(10), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)

    # Jurisdiction for tax lookup (ISO country, state/province code)
    country = db.Column(db.String(2), nullable=True)
    state = db.Column(db.String(8), nullable=True)

    credit_limit_cents = db.Column(db.BigInteger, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=CUSTOMER_STATUS_ACTIVE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @hybrid_property
    def is_active(self):
        return self.status == CUSTOMER_STATUS_ACTIVE

    def __repr__(self) -> str:
        return f"<Customer id={self.id} code={self.code!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "country": self.country,
            "state": self.state,
            "credit_limit_cents": self.credit_limit_cents,
            "status": self.status,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
