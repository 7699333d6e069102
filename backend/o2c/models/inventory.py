from __future__ import annotations

from ..extensions import db
from o2c.time_utils import to_utc_z


MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"

VALID_MOVEMENT_TYPES = {MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT}


class Product(db.Model):
    """
    Product master data.

    Stock is NOT a column here: on-hand quantity is always derived from
    InventoryMovement rows.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative list price in cents; order lines carry their own unit price
    price_cents = db.Column(db.BigInteger, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryMovement(db.Model):
    """
    Append-only stock ledger row.

    quantity_delta is signed: IN is positive, OUT is negative, ADJUSTMENT may
    be either. reference is always set to the business key (order number,
    receipt reference) of whatever caused the movement.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.CheckConstraint("quantity_delta <> 0", name="ck_inventory_movements_nonzero"),
        db.Index("ix_invmov_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_invmov_order_product", "order_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=False)
    reference = db.Column(db.String(64), nullable=False, index=True)

    # Order linkage (no FK on order_item_id: removed items keep their ledger rows)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    order_item_id = db.Column(db.Integer, nullable=True)

    actor_id = db.Column(db.String(64), nullable=True)

    occurred_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity_delta": self.quantity_delta,
            "reason": self.reason,
            "reference": self.reference,
            "order_id": self.order_id,
            "order_item_id": self.order_item_id,
            "actor_id": self.actor_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
