# Overview: Service-layer operations for sales orders; items, totals, stock and status.

"""
O2C Order Workflow

LIFECYCLE (see lifecycle_service.ORDER_TRANSITIONS):
    DRAFT -> CONFIRMED -> SHIPPED -> DELIVERED
    DRAFT | CONFIRMED -> CANCELLED

INVARIANTS:
- line_total = quantity * unit_price - discount
- total = sum(line_total) + tax + shipping, recomputed inside the same
  transaction as every item change
- Items are only added, changed or removed while the order is DRAFT
- Stock follows the items: creating an order or adding units writes OUT
  movements, removing units writes IN movements, cancelling gives back
  everything the order still holds. Always in the same transaction.

TRANSACTION RULES:
- One public call = one transaction containing the order change, its
  inventory movements and its audit event.
- The order row is locked first; product rows are locked before stock checks.
- A failed call leaves nothing behind except a *_FAILED audit event.
"""

from __future__ import annotations

from flask import current_app

from ..decorators import require_permission
from ..errors import InvalidAmountError, InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Order, OrderItem
from ..models.audit import SEVERITY_HIGH, SEVERITY_MEDIUM
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_DRAFT,
    ORDER_STATUS_SHIPPED,
)
from ..validation import normalize_currency, require_cents, require_int
from o2c.time_utils import normalize_datetime, utcnow
from . import amounts, audit_service, customer_service, inventory_service, lifecycle_service, product_service
from .concurrency import begin_write_transaction, lock_for_update
from .pagination import paginate
from .sequence_service import ORDER_PREFIX, next_business_key


DEFAULT_DESCRIPTION = "Sales Order"

ORDER_SORT_FIELDS = {
    "created_at": Order.created_at,
    "updated_at": Order.updated_at,
    "order_number": Order.order_number,
    "status": Order.status,
    "total_amount_cents": Order.total_amount_cents,
}


# =============================================================================
# Reads
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def get_order_by_number(order_number: str) -> Order:
    order = db.session.query(Order).filter_by(order_number=(order_number or "").strip()).first()
    if order is None:
        raise NotFoundError(f"Order {order_number!r} not found", details={"order_number": order_number})
    return order


def list_orders(
    *,
    customer_id: int | None = None,
    status: str | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Order listing. sort_by must be one of ORDER_SORT_FIELDS; anything else
    falls back to created_at so callers can not sort on arbitrary columns.
    """
    query = db.session.query(Order)
    if customer_id is not None:
        query = query.filter(Order.customer_id == customer_id)
    if status:
        lifecycle_service.validate_status("ORDER", status)
        query = query.filter(Order.status == status)

    column = ORDER_SORT_FIELDS.get(sort_by, Order.created_at)
    if (sort_order or "").lower() == "asc":
        query = query.order_by(column.asc(), Order.id.asc())
    else:
        query = query.order_by(column.desc(), Order.id.desc())
    return paginate(query, page=page, per_page=per_page)


def validate_order(order: Order) -> list[str]:
    """
    Advisory structural check. Returns every problem found; never raises.
    """
    errors = []
    if not (order.description or "").strip():
        errors.append("Order description is required")
    if order.customer_id is None:
        errors.append("Customer is required")
    if (order.total_amount_cents or 0) <= 0:
        errors.append("Total amount must be greater than zero")

    items = list(order.items or [])
    if not items:
        errors.append("Order must have at least one item")

    for index, item in enumerate(items, start=1):
        if (item.quantity or 0) <= 0:
            errors.append(f"Item {index}: quantity must be greater than zero")
        if (item.unit_price_cents or 0) < 0:
            errors.append(f"Item {index}: unit price can not be negative")
        expected = (item.quantity or 0) * (item.unit_price_cents or 0) - (item.discount_cents or 0)
        if not amounts.amounts_match(expected, item.line_total_cents or 0):
            errors.append(
                f"Item {index}: line total {item.line_total_cents} does not match "
                f"quantity * unit price - discount ({expected})"
            )

    if items:
        expected_subtotal = sum((item.line_total_cents or 0) for item in items)
        expected_total = amounts.order_total_cents(
            expected_subtotal, order.tax_amount_cents or 0, order.shipping_cost_cents or 0
        )
        if not amounts.amounts_match(expected_total, order.total_amount_cents or 0):
            errors.append(
                f"Order total {order.total_amount_cents} does not match items, tax and shipping ({expected_total})"
            )
    return errors


# =============================================================================
# Internal helpers (caller owns the transaction)
# =============================================================================

def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def _require_draft(order: Order, what: str) -> None:
    if order.status != ORDER_STATUS_DRAFT:
        raise InvalidStateError(
            f"{what} only allowed for DRAFT orders; order {order.order_number} is {order.status}",
            details={"order_id": order.id, "status": order.status},
        )


def _build_line(raw: dict, product) -> dict:
    quantity = require_int(raw.get("quantity"), "quantity")
    unit_price = raw.get("unit_price_cents")
    if unit_price is None:
        unit_price = product.price_cents
    if unit_price is None:
        raise InvalidAmountError(
            f"unit_price_cents is required for product {product.id}",
            details={"product_id": product.id},
        )
    discount = raw.get("discount_cents") or 0
    line_total = amounts.line_total_cents(quantity, unit_price, discount)
    return {
        "product_id": product.id,
        "description": (raw.get("description") or "").strip() or product.name,
        "quantity": quantity,
        "unit_price_cents": unit_price,
        "discount_cents": discount,
        "line_total_cents": line_total,
    }


def _recalculate_totals(order: Order) -> None:
    subtotal = amounts.subtotal_cents(order.items)
    tax = amounts.tax_amount_cents(subtotal, order.tax_rate_bps)
    order.subtotal_cents = subtotal
    order.tax_amount_cents = tax
    order.total_amount_cents = amounts.order_total_cents(subtotal, tax, order.shipping_cost_cents)


def _reserve(order: Order, item: OrderItem, quantity: int, *, reason: str, actor_id) -> None:
    inventory_service.record_movement(
        product_id=item.product_id,
        movement_type=MOVEMENT_OUT,
        quantity=quantity,
        reason=reason,
        reference=order.order_number,
        order_id=order.id,
        order_item_id=item.id,
        actor_id=actor_id,
    )


def _release(order: Order, item: OrderItem, quantity: int, *, reason: str, actor_id) -> None:
    inventory_service.record_movement(
        product_id=item.product_id,
        movement_type=MOVEMENT_IN,
        quantity=quantity,
        reason=reason,
        reference=order.order_number,
        order_id=order.id,
        order_item_id=item.id,
        actor_id=actor_id,
    )


def _totals_snapshot(order: Order) -> dict:
    return {
        "subtotal_cents": order.subtotal_cents,
        "tax_amount_cents": order.tax_amount_cents,
        "total_amount_cents": order.total_amount_cents,
    }


# =============================================================================
# Create
# =============================================================================

@require_permission("ORDER", "CREATE")
def create_order(
    *,
    customer_id: int,
    items: list[dict],
    tax_rate_bps: int | None = None,
    shipping_cost_cents: int | None = None,
    currency: str | None = None,
    description: str | None = None,
    notes: str | None = None,
    expected_delivery_date=None,
    actor_id: str | None = None,
) -> Order:
    """
    Create a DRAFT order with its items, reserving stock for every item.

    items: [{"product_id", "quantity", "unit_price_cents"?, "discount_cents"?, "description"?}]
    unit_price_cents defaults to the product's list price.

    Raises:
        ValidationError: no items, malformed currency or date
        NotFoundError: customer or a product missing or inactive
        InvalidAmountError: bad quantity/price/discount, or a non-positive total
        CreditExceededError: total above the customer's credit limit
        InsufficientStockError: not enough units for an item
    """
    def _op():
        if not items:
            raise ValidationError("Order must have at least one item")
        order_currency = normalize_currency(currency or current_app.config.get("DEFAULT_CURRENCY", "USD"))
        rate = require_int(tax_rate_bps or 0, "tax_rate_bps")
        if rate < 0:
            raise InvalidAmountError("tax_rate_bps must be non-negative", details={"tax_rate_bps": rate})
        shipping = require_cents(shipping_cost_cents or 0, "shipping_cost_cents")
        try:
            delivery_date = normalize_datetime(expected_delivery_date)
        except ValueError:
            raise ValidationError("invalid expected_delivery_date") from None

        begin_write_transaction()
        customer = customer_service.get_active_customer(customer_id)

        lines = []
        for raw in items:
            product = product_service.require_active_product(raw.get("product_id"), lock=True)
            lines.append(_build_line(raw, product))

        subtotal = amounts.subtotal_cents(lines)
        tax = amounts.tax_amount_cents(subtotal, rate)
        total = amounts.order_total_cents(subtotal, tax, shipping)
        if total <= 0:
            raise InvalidAmountError("Order total must be greater than zero", details={"total_amount_cents": total})
        customer_service.require_credit(customer, total)

        order_number = next_business_key(
            prefix=ORDER_PREFIX,
            year=utcnow().year,
            pad=current_app.config.get("ORDER_NUMBER_PAD", 3),
        )

        order = Order(
            order_number=order_number,
            customer_id=customer.id,
            description=(description or "").strip() or DEFAULT_DESCRIPTION,
            currency=order_currency,
            status=ORDER_STATUS_DRAFT,
            is_active=True,
            subtotal_cents=subtotal,
            tax_rate_bps=rate,
            tax_amount_cents=tax,
            shipping_cost_cents=shipping,
            total_amount_cents=total,
            notes=notes,
            expected_delivery_date=delivery_date,
            created_by=str(actor_id) if actor_id is not None else None,
        )
        for line in lines:
            order.items.append(OrderItem(**line))
        db.session.add(order)
        db.session.flush()

        for item in order.items:
            _reserve(order, item, item.quantity, reason="Order created", actor_id=actor_id)

        audit_service.record_event(
            event_type="ORDER_CREATED",
            action="CREATE",
            resource_type="ORDER",
            resource_id=order.id,
            actor_id=actor_id,
            new_values=order.to_dict(),
            details={"order_number": order.order_number, "customer_id": customer.id},
            severity=SEVERITY_MEDIUM,
        )
        db.session.commit()
        current_app.logger.info("Order %s created for customer %s", order.order_number, customer.code)
        return order

    return audit_service.run_recorded(
        _op,
        event_type="ORDER_CREATE_FAILED",
        action="CREATE",
        resource_type="ORDER",
        actor_id=actor_id,
        details={"customer_id": customer_id, "item_count": len(items or [])},
    )


# =============================================================================
# DRAFT edits
# =============================================================================

@require_permission("ORDER", "UPDATE", resource_id_arg="order_id")
def update_order_details(
    *,
    order_id: int,
    description: str | None = None,
    notes: str | None = None,
    expected_delivery_date=None,
    actor_id: str | None = None,
) -> Order:
    """Header fields only; totals and items have their own operations."""
    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)
        _require_draft(order, "Order updates are")
        old_values = order.to_dict(include_items=False)

        if description is not None:
            stripped = description.strip()
            if not stripped:
                raise ValidationError("Order description can not be empty")
            order.description = stripped
        if notes is not None:
            order.notes = notes
        if expected_delivery_date is not None:
            try:
                order.expected_delivery_date = normalize_datetime(expected_delivery_date)
            except ValueError:
                raise ValidationError("invalid expected_delivery_date") from None
        db.session.flush()

        audit_service.record_update(
            resource_type="ORDER",
            resource_id=order.id,
            old_values=old_values,
            new_values=order.to_dict(include_items=False),
            actor_id=actor_id,
        )
        db.session.commit()
        return order

    return audit_service.run_recorded(
        _op,
        event_type="ORDER_UPDATE_FAILED",
        action="UPDATE",
        resource_type="ORDER",
        resource_id=order_id,
        actor_id=actor_id,
    )


@require_permission("ORDER", "UPDATE", resource_id_arg="order_id")
def add_item(
    *,
    order_id: int,
    product_id: int,
    quantity: int,
    unit_price_cents: int | None = None,
    discount_cents: int = 0,
    description: str | None = None,
    actor_id: str | None = None,
) -> OrderItem:
    """Add a line to a DRAFT order and reserve its units."""
    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)
        _require_draft(order, "Adding items is")
        product = product_service.require_active_product(product_id, lock=True)

        line = _build_line(
            {
                "quantity": quantity,
                "unit_price_cents": unit_price_cents,
                "discount_cents": discount_cents,
                "description": description,
            },
            product,
        )
        before = _totals_snapshot(order)
        item = OrderItem(**line)
        order.items.append(item)
        db.session.flush()

        _reserve(order, item, item.quantity, reason="Order item added", actor_id=actor_id)
        _recalculate_totals(order)
        db.session.flush()

        audit_service.record_event(
            event_type="ORDER_ITEM_ADDED",
            action="ADD_ITEM",
            resource_type="ORDER",
            resource_id=order.id,
            actor_id=actor_id,
            old_values=before,
            new_values=_totals_snapshot(order),
            details={"order_number": order.order_number, "item": item.to_dict()},
            severity=SEVERITY_MEDIUM,
        )
        db.session.commit()
        return item

    return audit_service.run_recorded(
        _op,
        event_type="ORDER_UPDATE_FAILED",
        action="ADD_ITEM",
        resource_type="ORDER",
        resource_id=order_id,
        actor_id=actor_id,
        details={"product_id": product_id, "quantity": quantity},
    )


def _get_item(order: Order, item_id: int) -> OrderItem:
    for item in order.items:
        if item.id == item_id:
            return item
    raise NotFoundError(
        f"Order item {item_id} not found on order {order.order_number}",
        details={"order_id": order.id, "item_id": item_id},
    )


@require_permission("ORDER", "UPDATE", resource_id_arg="order_id")
def update_item(
    *,
    order_id: int,
    item_id: int,
    quantity: int | None = None,
    unit_price_cents: int | None = None,
    discount_cents: int | None = None,
    actor_id: str | None = None,
) -> OrderItem:
    """
    Change quantity, price or discount of a DRAFT line.

    A higher quantity reserves the extra units (OUT), a lower one gives the
    difference back (IN).
    """
    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)
        _require_draft(order, "Updating items is")
        item = _get_item(order, item_id)

        new_quantity = item.quantity if quantity is None else require_int(quantity, "quantity")
        new_price = item.unit_price_cents if unit_price_cents is None else unit_price_cents
        new_discount = item.discount_cents if discount_cents is None else discount_cents
        line_total = amounts.line_total_cents(new_quantity, new_price, new_discount)

        before = _totals_snapshot(order)
        old_item = item.to_dict()
        delta = new_quantity - item.quantity
        if delta > 0:
            product_service.require_active_product(item.product_id, lock=True)
            _reserve(order, item, delta, reason="Order item quantity increased", actor_id=actor_id)
        elif delta < 0:
            _release(order, item, -delta, reason="Order item quantity decreased", actor_id=actor_id)

        item.quantity = new_quantity
        item.unit_price_cents = new_price
        item.discount_cents = new_discount
        item.line_total_cents = line_total
        _recalculate_totals(order)
        db.session.flush()

        audit_service.record_event(
            event_type="ORDER_ITEM_UPDATED",
            action="UPDATE_ITEM",
            resource_type="ORDER",
            resource_id=order.id,
            actor_id=actor_id,
            old_values={**before, "item": old_item},
            new_values={**_totals_snapshot(order), "item": item.to_dict()},
            details={"order_number": order.order_number, "quantity_delta": delta},
            severity=SEVERITY_MEDIUM,
        )
        db.session.commit()
        return item

    return audit_service.run_recorded(
        _op,
        event_type="ORDER_UPDATE_FAILED",
        action="UPDATE_ITEM",
        resource_type="ORDER",
        resource_id=order_id,
        actor_id=actor_id,
        details={"item_id": item_id},
    )


@require_permission("ORDER", "UPDATE", resource_id_arg="order_id")
def remove_item(*, order_id: int, item_id: int, actor_id: str | None = None) -> Order:
    """Drop a DRAFT line and give its units back."""
    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)
        _require_draft(order, "Removing items is")
        item = _get_item(order, item_id)

        before = _totals_snapshot(order)
        old_item = item.to_dict()
        _release(order, item, item.quantity, reason="Order item removed", actor_id=actor_id)

        order.items.remove(item)
        _recalculate_totals(order)
        db.session.flush()

        audit_service.record_event(
            event_type="ORDER_ITEM_REMOVED",
            action="REMOVE_ITEM",
            resource_type="ORDER",
            resource_id=order.id,
            actor_id=actor_id,
            old_values={**before, "item": old_item},
            new_values=_totals_snapshot(order),
            details={"order_number": order.order_number},
            severity=SEVERITY_MEDIUM,
        )
        db.session.commit()
        return order

    return audit_service.run_recorded(
        _op,
        event_type="ORDER_UPDATE_FAILED",
        action="REMOVE_ITEM",
        resource_type="ORDER",
        resource_id=order_id,
        actor_id=actor_id,
        details={"item_id": item_id},
    )


# =============================================================================
# Status
# =============================================================================

@require_permission("ORDER", "UPDATE_STATUS", resource_id_arg="order_id")
def update_order_status(
    *,
    order_id: int,
    status: str,
    tracking_number: str | None = None,
    cancellation_reason: str | None = None,
    notes: str | None = None,
    actor_id: str | None = None,
) -> Order:
    """
    Move an order along its lifecycle.

    CONFIRMED, SHIPPED and DELIVERED stamp their timestamp (SHIPPED also
    stores the tracking number). CANCELLED deactivates the order and releases
    every unit it still holds.
    """
    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)
        old_status = order.status
        lifecycle_service.require_transition("ORDER", old_status, status)

        now = utcnow()
        released = []
        if status == ORDER_STATUS_CONFIRMED:
            order.confirmed_at = now
        elif status == ORDER_STATUS_SHIPPED:
            order.shipped_at = now
            if tracking_number:
                order.tracking_number = tracking_number.strip()
        elif status == ORDER_STATUS_DELIVERED:
            order.delivered_at = now
        elif status == ORDER_STATUS_CANCELLED:
            order.is_active = False
            order.cancelled_at = now
            order.cancellation_reason = cancellation_reason
            released = inventory_service.release_order_stock(
                order,
                reason=f"Order cancelled: {cancellation_reason}" if cancellation_reason else "Order cancelled",
                actor_id=actor_id,
            )

        order.status = status
        if notes is not None:
            order.notes = notes
        db.session.flush()

        audit_service.record_event(
            event_type="ORDER_STATUS_CHANGED",
            action="UPDATE_STATUS",
            resource_type="ORDER",
            resource_id=order.id,
            actor_id=actor_id,
            old_values={"status": old_status},
            new_values={"status": status},
            details={
                "order_number": order.order_number,
                "customer_id": order.customer_id,
                "tracking_number": tracking_number,
                "cancellation_reason": cancellation_reason,
                "notes": notes,
                "inventory_restored": bool(released),
            },
            severity=SEVERITY_HIGH if status == ORDER_STATUS_CANCELLED else SEVERITY_MEDIUM,
        )
        db.session.commit()
        current_app.logger.info("Order %s: %s -> %s", order.order_number, old_status, status)
        return order

    return audit_service.run_recorded(
        _op,
        event_type="ORDER_STATUS_UPDATE_FAILED",
        action="UPDATE_STATUS",
        resource_type="ORDER",
        resource_id=order_id,
        actor_id=actor_id,
        details={"new_status": status},
    )


def confirm_order(order_id: int, *, actor_id: str | None = None) -> Order:
    return update_order_status(order_id=order_id, status=ORDER_STATUS_CONFIRMED, actor_id=actor_id)


def ship_order(order_id: int, *, tracking_number: str | None = None, actor_id: str | None = None) -> Order:
    return update_order_status(
        order_id=order_id, status=ORDER_STATUS_SHIPPED, tracking_number=tracking_number, actor_id=actor_id
    )


def deliver_order(order_id: int, *, actor_id: str | None = None) -> Order:
    return update_order_status(order_id=order_id, status=ORDER_STATUS_DELIVERED, actor_id=actor_id)


def cancel_order(order_id: int, *, reason: str | None = None, actor_id: str | None = None) -> Order:
    return update_order_status(
        order_id=order_id, status=ORDER_STATUS_CANCELLED, cancellation_reason=reason, actor_id=actor_id
    )
