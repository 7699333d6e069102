# Overview: Service-layer operations for the audit trail; append, redact and query events.

"""
O2C Audit Trail

WHY: Every business mutation leaves an immutable record of who changed what,
from which values to which values. The trail is append-only.

TRANSACTION RULES:
- record_event() writes inside the caller's transaction under a SAVEPOINT.
  If the insert fails it is rolled back to the savepoint and logged; the
  business change still commits. Audit problems never block a sale.
- record_failure() runs AFTER the business transaction was rolled back and
  commits on its own, so failed attempts are still visible.

Severity defaults:
- create MEDIUM, update LOW, status changes MEDIUM
- cancellations, voids, overdue, payments, failures and denials HIGH
"""

from __future__ import annotations

from datetime import date, datetime

from flask import current_app, g, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditEvent
from ..models.audit import (
    SEVERITY_HIGH,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    VALID_SEVERITIES,
)
from o2c.time_utils import to_utc_z, utcnow
from .concurrency import run_with_retry
from .pagination import paginate


SENSITIVE_FIELDS = (
    "password",
    "token",
    "secret",
    "key",
    "creditCard",
    "ssn",
    "socialSecurityNumber",
    "bankAccount",
    "apiKey",
    "accessToken",
    "refreshToken",
)

REDACTED = "[REDACTED]"

_SENSITIVE_LOWER = tuple(field.lower() for field in SENSITIVE_FIELDS)


def _is_sensitive(key: str, path: str) -> bool:
    key_l = key.lower()
    path_l = path.lower()
    return any(field in key_l or field in path_l for field in _SENSITIVE_LOWER)


def _redact_value(value, path: str):
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, f"{path}[{index}]") for index, item in enumerate(value)]

    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            key = str(key)
            current_path = f"{path}.{key}" if path else key
            if _is_sensitive(key, current_path) and item:
                result[key] = REDACTED
            else:
                result[key] = _redact_value(item, current_path)
        return result

    # JSON columns can not hold datetimes
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def redact(values):
    """
    Replace values of sensitive keys with "[REDACTED]".

    Matching is a case-insensitive substring test on the key and on its dotted
    path, applied recursively through dicts and lists. Falsy values (None, "")
    are kept as-is since there is nothing to hide.
    """
    if values is None:
        return None
    return _redact_value(values, "")


def _correlation_id() -> str | None:
    if not has_app_context():
        return None
    return g.get("correlation_id")


def _build_event(
    *,
    event_type: str,
    action: str,
    resource_type: str,
    resource_id,
    actor_id: str | None,
    old_values,
    new_values,
    details,
    severity: str,
) -> AuditEvent:
    if severity not in VALID_SEVERITIES:
        severity = SEVERITY_MEDIUM
    return AuditEvent(
        event_type=event_type,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else "unknown",
        actor_id=str(actor_id) if actor_id is not None else None,
        old_values=redact(old_values),
        new_values=redact(new_values),
        details=redact(details),
        severity=severity,
        correlation_id=_correlation_id(),
        occurred_at=utcnow(),
    )


def record_event(
    *,
    event_type: str,
    action: str,
    resource_type: str,
    resource_id,
    actor_id: str | None = None,
    old_values: dict | None = None,
    new_values: dict | None = None,
    details: dict | None = None,
    severity: str = SEVERITY_MEDIUM,
) -> AuditEvent | None:
    """
    Append an audit event inside the caller's transaction.

    Returns the event, or None if it could not be written.
    """
    # Business changes flush first so their errors are not mistaken for ours
    db.session.flush()

    event = _build_event(
        event_type=event_type,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        actor_id=actor_id,
        old_values=old_values,
        new_values=new_values,
        details=details,
        severity=severity,
    )
    try:
        with db.session.begin_nested():
            db.session.add(event)
    except SQLAlchemyError:
        current_app.logger.exception(
            "Audit event %s for %s %s could not be recorded", event_type, resource_type, resource_id
        )
        return None
    return event


def record_create(*, resource_type: str, resource_id, new_values: dict | None, actor_id: str | None = None,
                  details: dict | None = None) -> AuditEvent | None:
    return record_event(
        event_type=f"{resource_type.upper()}_CREATED",
        action="CREATE",
        resource_type=resource_type,
        resource_id=resource_id,
        actor_id=actor_id,
        new_values=new_values,
        details=details,
        severity=SEVERITY_MEDIUM,
    )


def record_update(*, resource_type: str, resource_id, old_values: dict | None, new_values: dict | None,
                  actor_id: str | None = None, details: dict | None = None) -> AuditEvent | None:
    return record_event(
        event_type=f"{resource_type.upper()}_UPDATED",
        action="UPDATE",
        resource_type=resource_type,
        resource_id=resource_id,
        actor_id=actor_id,
        old_values=old_values,
        new_values=new_values,
        details=details,
        severity=SEVERITY_LOW,
    )


def _record_standalone(event: AuditEvent) -> AuditEvent | None:
    try:
        db.session.add(event)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            "Audit event %s for %s %s could not be recorded",
            event.event_type, event.resource_type, event.resource_id,
        )
        return None
    return event


def record_failure(
    *,
    event_type: str,
    action: str,
    resource_type: str,
    resource_id=None,
    actor_id: str | None = None,
    error: Exception | None = None,
    details: dict | None = None,
) -> AuditEvent | None:
    """
    Record a failed operation in its own short transaction.

    Call only after the business transaction has been rolled back.
    """
    payload = dict(details or {})
    if error is not None:
        payload["error"] = str(error)
        payload["error_type"] = getattr(error, "kind", type(error).__name__)
    event = _build_event(
        event_type=event_type,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        actor_id=actor_id,
        old_values=None,
        new_values=None,
        details=payload,
        severity=SEVERITY_HIGH,
    )
    return _record_standalone(event)


def record_security_event(
    *,
    event_type: str,
    resource_type: str,
    resource_id=None,
    action: str,
    actor_id: str | None = None,
    details: dict | None = None,
) -> AuditEvent | None:
    """Security events (denials and the like) are always HIGH and committed on their own."""
    event = _build_event(
        event_type=event_type,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        actor_id=actor_id,
        old_values=None,
        new_values=None,
        details=details,
        severity=SEVERITY_HIGH,
    )
    return _record_standalone(event)


def list_audit_events(
    *,
    resource_type: str | None = None,
    resource_id=None,
    event_type: str | None = None,
    actor_id: str | None = None,
    severity: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Newest first. start/end are inclusive bounds on occurred_at."""
    query = db.session.query(AuditEvent)
    if resource_type:
        query = query.filter(AuditEvent.resource_type == resource_type)
    if resource_id is not None:
        query = query.filter(AuditEvent.resource_id == str(resource_id))
    if event_type:
        query = query.filter(AuditEvent.event_type == event_type)
    if actor_id is not None:
        query = query.filter(AuditEvent.actor_id == str(actor_id))
    if severity:
        query = query.filter(AuditEvent.severity == severity)
    if start is not None:
        query = query.filter(AuditEvent.occurred_at >= start)
    if end is not None:
        query = query.filter(AuditEvent.occurred_at <= end)

    query = query.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc())
    return paginate(query, page=page, per_page=per_page)


def events_for_resource(resource_type: str, resource_id) -> list[AuditEvent]:
    """Full history of one resource, oldest first."""
    return (
        db.session.query(AuditEvent)
        .filter(
            AuditEvent.resource_type == resource_type,
            AuditEvent.resource_id == str(resource_id),
        )
        .order_by(AuditEvent.id.asc())
        .all()
    )


def run_recorded(
    func,
    *,
    event_type: str,
    action: str,
    resource_type: str,
    resource_id=None,
    actor_id: str | None = None,
    details: dict | None = None,
):
    """
    run_with_retry(func), writing a HIGH failure event if it raises.

    The failure is recorded after run_with_retry rolled the session back, so
    nothing of the failed attempt is committed along with it. The original
    exception always propagates.
    """
    try:
        return run_with_retry(func)
    except Exception as exc:
        current_app.logger.warning(
            "%s %s %s failed: %s", action, resource_type, resource_id if resource_id is not None else "-", exc
        )
        record_failure(
            event_type=event_type,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_id=actor_id,
            error=exc,
            details=details,
        )
        raise
