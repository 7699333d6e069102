from __future__ import annotations

from ..extensions import db
from o2c.time_utils import to_utc_z


SEVERITY_LOW = "LOW"
SEVERITY_MEDIUM = "MEDIUM"
SEVERITY_HIGH = "HIGH"
SEVERITY_CRITICAL = "CRITICAL"

VALID_SEVERITIES = {SEVERITY_LOW, SEVERITY_MEDIUM, SEVERITY_HIGH, SEVERITY_CRITICAL}


class AuditEvent(db.Model):
    """
    Append-only audit trail of business events.

    IMMUTABLE: Never update. The only delete is the retention sweep, which
    removes LOW/MEDIUM events older than the configured window.
    Value payloads are redacted before they are written.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_resource", "resource_type", "resource_id"),
        db.Index("ix_audit_events_severity_occurred", "severity", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # What happened
    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g., ORDER_CREATED, PAYMENT_RECEIVED
    action = db.Column(db.String(32), nullable=False)  # e.g., CREATE, UPDATE_STATUS, ADD_PAYMENT

    # What it refers to (generic pointer; "unknown" when a create failed)
    resource_type = db.Column(db.String(32), nullable=False)
    resource_id = db.Column(db.String(64), nullable=False)

    actor_id = db.Column(db.String(64), nullable=True, index=True)

    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)
    details = db.Column(db.JSON, nullable=True)

    severity = db.Column(db.String(16), nullable=False, default=SEVERITY_MEDIUM)
    correlation_id = db.Column(db.String(64), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "actor_id": self.actor_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "details": self.details,
            "severity": self.severity,
            "correlation_id": self.correlation_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class BusinessKeySequence(db.Model):
    """
    Atomic year-scoped counters for business keys.

    WHY: "read the last number and add one" races under concurrency. The
    counter row is incremented with a single UPDATE inside the creating
    transaction, which also serializes concurrent creators on the row.
    """
    __tablename__ = "business_key_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", "year", name="uq_business_key_sequences_prefix_year"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(16), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prefix": self.prefix,
            "year": self.year,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
