# Overview: Service-layer operations for customers and the credit gate.

"""
Customers & Credit

Business keys: code (^[A-Z0-9-]{3,10}$) and email are unique.

Credit gate:
- check_credit() is a point-in-time test of ONE amount against the static
  credit limit. It does not add up other open orders or unpaid invoices.
- Equality passes: an order exactly at the limit is allowed.

Status:
- ACTIVE customers can order and be invoiced; INACTIVE and SUSPENDED can not.
- A customer with orders still in flight (not DELIVERED / CANCELLED) can not
  be deactivated.
"""

from __future__ import annotations

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..decorators import require_permission
from ..errors import (
    ConflictError,
    CreditExceededError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Customer, Order
from ..models.audit import SEVERITY_HIGH, SEVERITY_MEDIUM
from ..models.customers import (
    CUSTOMER_STATUS_ACTIVE,
    CUSTOMER_STATUS_INACTIVE,
    CUSTOMER_STATUS_SUSPENDED,
)
from ..models.orders import ORDER_STATUS_CANCELLED, ORDER_STATUS_DELIVERED
from ..validation import normalize_customer_code, normalize_email, require_cents, require_int
from . import audit_service
from .concurrency import begin_write_transaction, lock_for_update
from .pagination import paginate


CUSTOMER_MUTABLE_FIELDS = {"code", "name", "email", "phone", "country", "state"}


def _normalize_name(name: str | None) -> str:
    stripped = (name or "").strip()
    if not stripped:
        raise ValidationError("Customer name is required")
    if len(stripped) > 255:
        raise ValidationError("Customer name must be at most 255 characters")
    return stripped


def _normalize_region(value: str | None, field: str, max_len: int) -> str | None:
    if value is None:
        return None
    stripped = value.strip().upper()
    if not stripped:
        return None
    if len(stripped) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters")
    return stripped


def _ensure_unique(*, code: str | None = None, email: str | None = None, exclude_id: int | None = None) -> None:
    if code is not None:
        q = db.session.query(Customer.id).filter(Customer.code == code)
        if exclude_id is not None:
            q = q.filter(Customer.id != exclude_id)
        if q.first():
            raise ConflictError(f"Customer code '{code}' already exists", details={"code": code})
    if email is not None:
        q = db.session.query(Customer.id).filter(Customer.email == email)
        if exclude_id is not None:
            q = q.filter(Customer.id != exclude_id)
        if q.first():
            raise ConflictError(f"Customer email '{email}' already exists", details={"email": email})


def _load_customer(customer_id: int, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


def get_customer(customer_id: int) -> Customer:
    return _load_customer(customer_id)


def get_active_customer(customer_id: int, *, lock: bool = False) -> Customer:
    """Customer that may order or be invoiced; anything else reads as not found."""
    customer = _load_customer(customer_id, lock=lock)
    if not customer.is_active:
        raise NotFoundError(
            f"Customer {customer_id} not found or inactive",
            details={"customer_id": customer_id, "status": customer.status},
        )
    return customer


def list_customers(
    *,
    search: str | None = None,
    is_active: bool | None = None,
    status: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Customer)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Customer.name.ilike(like),
            Customer.code.ilike(like),
            Customer.email.ilike(like),
        ))
    if is_active is True:
        query = query.filter(Customer.status == CUSTOMER_STATUS_ACTIVE)
    elif is_active is False:
        query = query.filter(Customer.status != CUSTOMER_STATUS_ACTIVE)
    if status:
        query = query.filter(Customer.status == status)
    query = query.order_by(Customer.name.asc(), Customer.id.asc())
    return paginate(query, page=page, per_page=per_page)


def check_credit(customer: Customer, amount_cents: int) -> bool:
    """True when amount_cents fits within the customer's credit limit (equality passes)."""
    amount_cents = require_int(amount_cents, "amount_cents")
    if amount_cents < 0:
        return False
    return amount_cents <= customer.credit_limit_cents


def require_credit(customer: Customer, amount_cents: int) -> None:
    if not check_credit(customer, amount_cents):
        raise CreditExceededError(
            f"Amount exceeds credit limit for customer {customer.code}",
            details={
                "customer_id": customer.id,
                "amount_cents": amount_cents,
                "credit_limit_cents": customer.credit_limit_cents,
            },
        )


@require_permission("CUSTOMER", "CREATE")
def create_customer(
    *,
    code: str,
    name: str,
    email: str,
    credit_limit_cents: int,
    phone: str | None = None,
    country: str | None = None,
    state: str | None = None,
    actor_id: str | None = None,
) -> Customer:
    """
    Create an ACTIVE customer.

    Raises:
        ValidationError: malformed code, name or email
        InvalidAmountError: credit limit not positive
        ConflictError: code or email already taken
    """
    def _op():
        normalized_code = normalize_customer_code(code)
        normalized_email = normalize_email(email)
        normalized_name = _normalize_name(name)
        limit = require_cents(credit_limit_cents, "credit_limit_cents", allow_zero=False)

        begin_write_transaction()
        _ensure_unique(code=normalized_code, email=normalized_email)

        customer = Customer(
            code=normalized_code,
            name=normalized_name,
            email=normalized_email,
            phone=(phone or "").strip() or None,
            country=_normalize_region(country, "country", 2),
            state=_normalize_region(state, "state", 8),
            credit_limit_cents=limit,
            status=CUSTOMER_STATUS_ACTIVE,
        )
        db.session.add(customer)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError("Customer code or email already exists") from None

        audit_service.record_create(
            resource_type="CUSTOMER",
            resource_id=customer.id,
            new_values=customer.to_dict(),
            actor_id=actor_id,
        )
        db.session.commit()
        return customer

    return audit_service.run_recorded(
        _op,
        event_type="CUSTOMER_CREATE_FAILED",
        action="CREATE",
        resource_type="CUSTOMER",
        actor_id=actor_id,
        details={"code": code},
    )


@require_permission("CUSTOMER", "UPDATE", resource_id_arg="customer_id")
def update_customer(*, customer_id: int, patch: dict, actor_id: str | None = None) -> Customer:
    """Apply a partial update; unknown keys are ignored, status and credit have their own operations."""
    def _op():
        begin_write_transaction()
        customer = _load_customer(customer_id, lock=True)
        old_values = customer.to_dict()

        changes = {}
        for key, value in patch.items():
            if key not in CUSTOMER_MUTABLE_FIELDS:
                continue
            if key == "code":
                value = normalize_customer_code(value)
            elif key == "email":
                value = normalize_email(value)
            elif key == "name":
                value = _normalize_name(value)
            elif key == "country":
                value = _normalize_region(value, "country", 2)
            elif key == "state":
                value = _normalize_region(value, "state", 8)
            elif key == "phone":
                value = (value or "").strip() or None
            changes[key] = value

        _ensure_unique(code=changes.get("code"), email=changes.get("email"), exclude_id=customer.id)

        for key, value in changes.items():
            setattr(customer, key, value)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError("Customer code or email already exists") from None

        audit_service.record_update(
            resource_type="CUSTOMER",
            resource_id=customer.id,
            old_values=old_values,
            new_values=customer.to_dict(),
            actor_id=actor_id,
        )
        db.session.commit()
        return customer

    return audit_service.run_recorded(
        _op,
        event_type="CUSTOMER_UPDATE_FAILED",
        action="UPDATE",
        resource_type="CUSTOMER",
        resource_id=customer_id,
        actor_id=actor_id,
    )


@require_permission("CUSTOMER", "UPDATE_CREDIT", resource_id_arg="customer_id")
def update_credit_limit(*, customer_id: int, new_limit_cents: int, actor_id: str | None = None) -> Customer:
    def _op():
        limit = require_int(new_limit_cents, "new_limit_cents")
        if limit < 0:
            raise InvalidAmountError("Credit limit can not be negative", details={"new_limit_cents": limit})
        limit = require_cents(limit, "new_limit_cents")

        begin_write_transaction()
        customer = _load_customer(customer_id, lock=True)
        old_limit = customer.credit_limit_cents
        customer.credit_limit_cents = limit
        db.session.flush()

        audit_service.record_event(
            event_type="CUSTOMER_CREDIT_LIMIT_UPDATED",
            action="UPDATE_CREDIT",
            resource_type="CUSTOMER",
            resource_id=customer.id,
            actor_id=actor_id,
            old_values={"credit_limit_cents": old_limit},
            new_values={"credit_limit_cents": limit},
            severity=SEVERITY_MEDIUM,
        )
        db.session.commit()
        return customer

    return audit_service.run_recorded(
        _op,
        event_type="CUSTOMER_UPDATE_FAILED",
        action="UPDATE_CREDIT",
        resource_type="CUSTOMER",
        resource_id=customer_id,
        actor_id=actor_id,
        details={"new_limit_cents": new_limit_cents},
    )


def _open_order_count(customer_id: int) -> int:
    return (
        db.session.query(Order.id)
        .filter(
            Order.customer_id == customer_id,
            Order.status.notin_([ORDER_STATUS_DELIVERED, ORDER_STATUS_CANCELLED]),
        )
        .count()
    )


def _change_status(customer_id: int, new_status: str, *, actor_id: str | None, reason: str | None,
                   action: str, event_type: str, severity: str) -> Customer:
    def _op():
        begin_write_transaction()
        customer = _load_customer(customer_id, lock=True)
        old_status = customer.status

        if old_status == new_status:
            raise InvalidStateError(
                f"Customer {customer.code} is already {new_status}",
                details={"customer_id": customer.id, "status": old_status},
            )

        if new_status == CUSTOMER_STATUS_INACTIVE:
            open_orders = _open_order_count(customer.id)
            if open_orders:
                raise InvalidStateError(
                    f"Customer {customer.code} has {open_orders} open order(s) and can not be deactivated",
                    details={"customer_id": customer.id, "open_orders": open_orders},
                )

        customer.status = new_status
        db.session.flush()

        audit_service.record_event(
            event_type=event_type,
            action=action,
            resource_type="CUSTOMER",
            resource_id=customer.id,
            actor_id=actor_id,
            old_values={"status": old_status},
            new_values={"status": new_status},
            details={"reason": reason} if reason else None,
            severity=severity,
        )
        db.session.commit()
        return customer

    return audit_service.run_recorded(
        _op,
        event_type="CUSTOMER_STATUS_UPDATE_FAILED",
        action=action,
        resource_type="CUSTOMER",
        resource_id=customer_id,
        actor_id=actor_id,
        details={"status": new_status},
    )


@require_permission("CUSTOMER", "ACTIVATE", resource_id_arg="customer_id")
def activate_customer(*, customer_id: int, actor_id: str | None = None) -> Customer:
    return _change_status(
        customer_id, CUSTOMER_STATUS_ACTIVE, actor_id=actor_id, reason=None,
        action="ACTIVATE", event_type="CUSTOMER_ACTIVATED", severity=SEVERITY_MEDIUM,
    )


@require_permission("CUSTOMER", "DEACTIVATE", resource_id_arg="customer_id")
def deactivate_customer(*, customer_id: int, reason: str | None = None, actor_id: str | None = None) -> Customer:
    return _change_status(
        customer_id, CUSTOMER_STATUS_INACTIVE, actor_id=actor_id, reason=reason,
        action="DEACTIVATE", event_type="CUSTOMER_DEACTIVATED", severity=SEVERITY_HIGH,
    )


@require_permission("CUSTOMER", "SUSPEND", resource_id_arg="customer_id")
def suspend_customer(*, customer_id: int, reason: str | None = None, actor_id: str | None = None) -> Customer:
    """Credit hold: no new orders or invoices until re-activated."""
    return _change_status(
        customer_id, CUSTOMER_STATUS_SUSPENDED, actor_id=actor_id, reason=reason,
        action="SUSPEND", event_type="CUSTOMER_SUSPENDED", severity=SEVERITY_HIGH,
    )
