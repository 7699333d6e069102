# Overview: Service-layer operations for maintenance; audit retention sweep.

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import AuditEvent
from ..models.audit import SEVERITY_LOW, SEVERITY_MEDIUM
from o2c.time_utils import utcnow


def cleanup_old_events(*, retention_days: int | None = None) -> int:
    """
    Delete LOW and MEDIUM audit events older than retention_days.

    HIGH and CRITICAL events are preserved for compliance regardless of age.
    """
    if retention_days is None:
        retention_days = current_app.config.get("AUDIT_RETENTION_DAYS", 365)
    if retention_days < 0:
        raise ValueError("retention_days must be non-negative")

    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(AuditEvent).filter(
        AuditEvent.occurred_at < cutoff,
        AuditEvent.severity.in_([SEVERITY_LOW, SEVERITY_MEDIUM]),
    ).delete(synchronize_session=False)
    db.session.commit()
    current_app.logger.info("Audit retention: removed %s event(s) older than %s days", deleted, retention_days)
    return deleted
