# Overview: Service-layer operations for inventory; append-only stock ledger.

"""
O2C Inventory Invariants (authoritative)

Inventory model:
- Stock is ledger-derived from InventoryMovement rows; never stored as a
  mutable quantity field.
- Stock on hand is SUM(quantity_delta) over a product's movements.
- Movements are never updated or deleted. Corrections are new movements.

Business invariants:
- Stock may never go negative. OUT, and an ADJUSTMENT that lowers stock, are
  refused with InsufficientStockError before anything is written.
- Every movement carries a reference (the business key of its cause).
- Order-driven movements also carry order_id / order_item_id, so the units
  an order holds can be recomputed from the ledger alone.

Transactions:
- record_movement() works inside the caller's transaction and never commits;
  the order service calls it next to the item change that caused it.
- receive_stock() / adjust_stock() are standalone operations with their own
  transaction and audit event.
- Product rows are locked before the stock check so two writers can not
  both pass the check against the same units.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from sqlalchemy import func

from ..decorators import require_permission
from ..errors import InsufficientStockError, InvalidAmountError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryMovement, Product
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    VALID_MOVEMENT_TYPES,
)
from ..models.audit import SEVERITY_MEDIUM
from ..validation import require_int
from o2c.time_utils import normalize_datetime, utcnow
from . import audit_service
from .concurrency import begin_write_transaction, lock_for_update


def _get_product(product_id: int, *, require_active: bool = False, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    if require_active and not product.is_active:
        raise NotFoundError(f"Product {product_id} is inactive", details={"product_id": product_id})
    return product


def current_stock(product_id: int) -> int:
    """Stock on hand: SUM(quantity_delta) over all movements of the product."""
    q = db.session.query(
        func.coalesce(func.sum(InventoryMovement.quantity_delta), 0)
    ).filter(InventoryMovement.product_id == product_id)
    return int(q.scalar() or 0)


def stock_levels(product_ids: Iterable[int]) -> dict[int, int]:
    """current_stock() for several products in one query; missing products map to 0."""
    ids = list(set(product_ids))
    levels = {pid: 0 for pid in ids}
    if not ids:
        return levels
    rows = (
        db.session.query(InventoryMovement.product_id, func.sum(InventoryMovement.quantity_delta))
        .filter(InventoryMovement.product_id.in_(ids))
        .group_by(InventoryMovement.product_id)
        .all()
    )
    for product_id, total in rows:
        levels[product_id] = int(total or 0)
    return levels


def fold_stock(movements: Iterable) -> int:
    """Replay a sequence of movements (rows or dicts) into a stock figure."""
    total = 0
    for movement in movements:
        delta = movement["quantity_delta"] if isinstance(movement, dict) else movement.quantity_delta
        total += delta
    return total


def fold_stock_levels(movements: Iterable) -> dict[int, int]:
    """Replay movements of many products into {product_id: stock}."""
    levels: dict[int, int] = defaultdict(int)
    for movement in movements:
        if isinstance(movement, dict):
            levels[movement["product_id"]] += movement["quantity_delta"]
        else:
            levels[movement.product_id] += movement.quantity_delta
    return dict(levels)


def reserved_quantities_for_order(order_id: int) -> dict[int, int]:
    """
    Units the order currently holds, per product.

    This is the negated sum of the order's own movements: every OUT it took
    minus every IN it already gave back. Products with nothing held are
    omitted.
    """
    rows = (
        db.session.query(InventoryMovement.product_id, func.sum(InventoryMovement.quantity_delta))
        .filter(InventoryMovement.order_id == order_id)
        .group_by(InventoryMovement.product_id)
        .all()
    )
    held = {}
    for product_id, total in rows:
        units = -int(total or 0)
        if units > 0:
            held[product_id] = units
    return held


def _signed_delta(movement_type: str, quantity: int) -> int:
    if movement_type == MOVEMENT_IN:
        if quantity <= 0:
            raise InvalidAmountError("IN quantity must be positive", details={"quantity": quantity})
        return quantity
    if movement_type == MOVEMENT_OUT:
        if quantity <= 0:
            raise InvalidAmountError("OUT quantity must be positive", details={"quantity": quantity})
        return -quantity
    # ADJUSTMENT: signed as given
    if quantity == 0:
        raise InvalidAmountError("ADJUSTMENT quantity must be non-zero", details={"quantity": quantity})
    return quantity


def record_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    reason: str,
    reference: str,
    order_id: int | None = None,
    order_item_id: int | None = None,
    actor_id: str | None = None,
    occurred_at=None,
) -> InventoryMovement:
    """
    Append one movement inside the CURRENT transaction.

    quantity is the unit count: positive for IN and OUT (the sign is applied
    here), signed for ADJUSTMENT. The product row is locked before the stock
    check. Never commits.
    """
    if movement_type not in VALID_MOVEMENT_TYPES:
        raise ValidationError(
            f"Invalid movement type '{movement_type}'",
            details={"allowed": sorted(VALID_MOVEMENT_TYPES)},
        )
    if not reference:
        raise ValidationError("reference is required for inventory movements")
    if not reason:
        raise ValidationError("reason is required for inventory movements")

    quantity = require_int(quantity, "quantity")
    delta = _signed_delta(movement_type, quantity)

    _get_product(product_id, lock=True)

    if delta < 0:
        on_hand = current_stock(product_id)
        if on_hand + delta < 0:
            raise InsufficientStockError(
                f"Insufficient stock for product {product_id}",
                details={"product_id": product_id, "available": on_hand, "requested": -delta},
            )

    try:
        when = normalize_datetime(occurred_at) or utcnow()
    except ValueError:
        raise ValidationError("invalid occurred_at") from None

    movement = InventoryMovement(
        product_id=product_id,
        type=movement_type,
        quantity_delta=delta,
        reason=reason,
        reference=reference,
        order_id=order_id,
        order_item_id=order_item_id,
        actor_id=str(actor_id) if actor_id is not None else None,
        occurred_at=when,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def release_order_stock(order, *, reason: str, actor_id: str | None = None) -> list[InventoryMovement]:
    """
    Give back every unit an order still holds (IN movements).

    Driven by the ledger, not the item list, so stock returns to exactly
    where it was before the order took it.
    """
    movements = []
    for product_id, units in sorted(reserved_quantities_for_order(order.id).items()):
        movements.append(
            record_movement(
                product_id=product_id,
                movement_type=MOVEMENT_IN,
                quantity=units,
                reason=reason,
                reference=order.order_number,
                order_id=order.id,
                actor_id=actor_id,
            )
        )
    return movements


@require_permission("INVENTORY", "RECEIVE", resource_id_arg="product_id")
def receive_stock(
    *,
    product_id: int,
    quantity: int,
    reference: str,
    reason: str = "Stock received",
    actor_id: str | None = None,
    occurred_at=None,
) -> InventoryMovement:
    """Book incoming units (IN) in their own transaction."""
    def _op():
        begin_write_transaction()
        _get_product(product_id, require_active=True)
        movement = record_movement(
            product_id=product_id,
            movement_type=MOVEMENT_IN,
            quantity=quantity,
            reason=reason,
            reference=reference,
            actor_id=actor_id,
            occurred_at=occurred_at,
        )
        audit_service.record_event(
            event_type="STOCK_MOVEMENT_CREATED",
            action="RECEIVE",
            resource_type="PRODUCT",
            resource_id=product_id,
            actor_id=actor_id,
            new_values=movement.to_dict(),
            details={"stock_after": current_stock(product_id)},
            severity=SEVERITY_MEDIUM,
        )
        db.session.commit()
        return movement

    return audit_service.run_recorded(
        _op,
        event_type="STOCK_MOVEMENT_FAILED",
        action="RECEIVE",
        resource_type="PRODUCT",
        resource_id=product_id,
        actor_id=actor_id,
        details={"quantity": quantity, "reference": reference},
    )


@require_permission("INVENTORY", "ADJUST", resource_id_arg="product_id")
def adjust_stock(
    *,
    product_id: int,
    quantity_delta: int,
    reason: str,
    reference: str,
    actor_id: str | None = None,
    occurred_at=None,
) -> InventoryMovement:
    """Signed correction (count differences, damage). Can not drive stock below zero."""
    def _op():
        begin_write_transaction()
        movement = record_movement(
            product_id=product_id,
            movement_type=MOVEMENT_ADJUSTMENT,
            quantity=quantity_delta,
            reason=reason,
            reference=reference,
            actor_id=actor_id,
            occurred_at=occurred_at,
        )
        audit_service.record_event(
            event_type="STOCK_ADJUSTMENT_CREATED",
            action="ADJUST",
            resource_type="PRODUCT",
            resource_id=product_id,
            actor_id=actor_id,
            new_values=movement.to_dict(),
            details={"stock_after": current_stock(product_id)},
            severity=SEVERITY_MEDIUM,
        )
        db.session.commit()
        return movement

    return audit_service.run_recorded(
        _op,
        event_type="STOCK_ADJUSTMENT_FAILED",
        action="ADJUST",
        resource_type="PRODUCT",
        resource_id=product_id,
        actor_id=actor_id,
        details={"quantity_delta": quantity_delta, "reference": reference},
    )


def list_movements(
    *,
    product_id: int | None = None,
    order_id: int | None = None,
    limit: int = 200,
) -> list[InventoryMovement]:
    """Ledger rows, oldest first."""
    q = db.session.query(InventoryMovement)
    if product_id is not None:
        q = q.filter(InventoryMovement.product_id == product_id)
    if order_id is not None:
        q = q.filter(InventoryMovement.order_id == order_id)
    q = q.order_by(InventoryMovement.occurred_at.asc(), InventoryMovement.id.asc())
    return q.limit(limit).all()
