# Overview: Service-layer operations for the product registry.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..decorators import require_permission
from ..errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product
from ..models.audit import SEVERITY_MEDIUM
from ..validation import require_cents
from . import audit_service
from .concurrency import begin_write_transaction, lock_for_update


def get_product(product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def require_active_product(product_id: int, *, lock: bool = False) -> Product:
    """Product that can be put on an order; inactive reads as not found."""
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None or not product.is_active:
        raise NotFoundError(
            f"Product {product_id} not found or inactive",
            details={"product_id": product_id},
        )
    return product


def get_product_by_sku(sku: str) -> Product:
    product = db.session.query(Product).filter_by(sku=(sku or "").strip()).first()
    if product is None:
        raise NotFoundError(f"Product {sku!r} not found", details={"sku": sku})
    return product


@require_permission("PRODUCT", "CREATE")
def create_product(
    *,
    sku: str,
    name: str,
    price_cents: int | None = None,
    description: str | None = None,
    actor_id: str | None = None,
) -> Product:
    """
    Register a sellable product. Starts with zero stock; use
    inventory_service.receive_stock() to book units in.
    """
    def _op():
        normalized_sku = (sku or "").strip()
        normalized_name = (name or "").strip()
        if not normalized_sku:
            raise ValidationError("sku is required")
        if len(normalized_sku) > 64:
            raise ValidationError("sku must be at most 64 characters")
        if not normalized_name:
            raise ValidationError("name is required")
        price = require_cents(price_cents, "price_cents") if price_cents is not None else None

        begin_write_transaction()
        if db.session.query(Product.id).filter_by(sku=normalized_sku).first():
            raise ConflictError(f"Product SKU '{normalized_sku}' already exists", details={"sku": normalized_sku})

        product = Product(
            sku=normalized_sku,
            name=normalized_name,
            description=description,
            price_cents=price,
            is_active=True,
        )
        db.session.add(product)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError(f"Product SKU '{normalized_sku}' already exists") from None

        audit_service.record_create(
            resource_type="PRODUCT",
            resource_id=product.id,
            new_values=product.to_dict(),
            actor_id=actor_id,
        )
        db.session.commit()
        return product

    return audit_service.run_recorded(
        _op,
        event_type="PRODUCT_CREATE_FAILED",
        action="CREATE",
        resource_type="PRODUCT",
        actor_id=actor_id,
        details={"sku": sku},
    )


@require_permission("PRODUCT", "DEACTIVATE", resource_id_arg="product_id")
def deactivate_product(*, product_id: int, actor_id: str | None = None) -> Product:
    """Soft delete: the product stays on existing orders and in the ledger, but can not be ordered."""
    def _op():
        begin_write_transaction()
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        if not product.is_active:
            raise InvalidStateError(f"Product {product.sku} is already inactive")

        product.is_active = False
        db.session.flush()

        audit_service.record_event(
            event_type="PRODUCT_DEACTIVATED",
            action="DEACTIVATE",
            resource_type="PRODUCT",
            resource_id=product.id,
            actor_id=actor_id,
            old_values={"is_active": True},
            new_values={"is_active": False},
            severity=SEVERITY_MEDIUM,
        )
        db.session.commit()
        return product

    return audit_service.run_recorded(
        _op,
        event_type="PRODUCT_UPDATE_FAILED",
        action="DEACTIVATE",
        resource_type="PRODUCT",
        resource_id=product_id,
        actor_id=actor_id,
    )
