from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


MOVEMENT_SALE = "SALE"
MOVEMENT_PURCHASE = "PURCHASE"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_TRANSFER = "TRANSFER"
MOVEMENT_TYPES = (MOVEMENT_SALE, MOVEMENT_PURCHASE, MOVEMENT_ADJUSTMENT, MOVEMENT_TRANSFER)


class WarehouseStock(db.Model):
    """
    Running balance per (product, location).

    Materialized from InventoryMovement: quantity always equals the sum of
    the movement quantities for the pair. Only ledger_service.record_movement
    writes it (and rebuild_balances when repairing).
    """
    __tablename__ = "warehouse_stocks"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", name="uq_warehouse_stock_product_location"),
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product")
    location = db.relationship("StockLocation")

    def __repr__(self) -> str:
        return f"<WarehouseStock product_id={self.product_id} location_id={self.location_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryMovement(db.Model):
    """
    Append-only stock ledger entry. Never updated or deleted.

    quantity is signed: positive = inbound, negative = outbound.
    reference is the id of the originating sale, purchase or adjustment, or
    the shared id of both legs of a transfer.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_movements_product_location", "product_id", "location_id"),
        db.Index("ix_movements_location_type_created", "location_id", "movement_type", "created_at"),
        db.CheckConstraint("quantity <> 0", name="ck_movements_quantity_nonzero"),
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    movement_type = db.Column(db.String(16), nullable=False)
    reference = db.Column(db.String(64), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<InventoryMovement id={self.id} {self.movement_type} product_id={self.product_id} "
            f"location_id={self.location_id} quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "movement_type": self.movement_type,
            "reference": self.reference,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryAdjustment(db.Model):
    """
    Manual stock correction.

    SIGN CONVENTION: quantity is the shrinkage quantity. Positive means units
    were removed (loss, breakage), negative means units were found. The
    ledger movement posted for it is always -quantity, and the IPV report
    adds quantity to the outflow column as-is.
    """
    __tablename__ = "inventory_adjustments"
    __table_args__ = (
        db.Index("ix_adjustments_location_created", "location_id", "created_at"),
        db.CheckConstraint("quantity <> 0", name="ck_adjustments_quantity_nonzero"),
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "user_id": self.user_id,
            "reason": self.reason,
            "quantity": self.quantity,
            "created_at": to_utc_z(self.created_at),
        }
