from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Sale(db.Model):
    """
    Sale document, always attached to the seller's shift.

    transfer_code is NULL for cash sales; when present it is unique across
    all sales (unique constraint, NULLs do not collide).
    """
    __tablename__ = "sales"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=False)
    transfer_code = db.Column(db.String(64), nullable=True, unique=True)
    total_cents = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        lazy="selectin",
        order_by="SaleItem.id",
    )
    payment_method = db.relationship("PaymentMethod", lazy="joined")
    shift = db.relationship("Shift")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "shift_id": self.shift_id,
            "payment_method": self.payment_method.name if self.payment_method else None,
            "transfer_code": self.transfer_code,
            "total_cents": self.total_cents,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class SaleItem(db.Model):
    __tablename__ = "sale_items"
    __table_args__ = (
        db.Index("ix_sale_items_location_product", "location_id", "product_id"),
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="items")
    allocations = db.relationship(
        "SaleItemCostAllocation",
        back_populates="sale_item",
        lazy="selectin",
        order_by="SaleItemCostAllocation.id",
    )

    @property
    def cost_cents(self) -> int:
        return sum(a.quantity_used * a.unit_cost_cents for a in self.allocations)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.total_cents,
            "cost_cents": self.cost_cents,
            "allocations": [a.to_dict() for a in self.allocations],
        }


class SaleItemCostAllocation(db.Model):
    """
    FIFO cost trail: quantity_used units of a sale item were costed against
    one purchase lot at the lot's unit cost.

    Per sale item the quantities sum to the item quantity; per lot they never
    exceed the lot quantity.
    """
    __tablename__ = "sale_item_cost_allocations"
    __table_args__ = (
        db.CheckConstraint("quantity_used > 0", name="ck_allocations_quantity_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    purchase_item_id = db.Column(db.Integer, db.ForeignKey("purchase_items.id"), nullable=False, index=True)
    quantity_used = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    sale_item = db.relationship("SaleItem", back_populates="allocations")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_item_id": self.sale_item_id,
            "purchase_item_id": self.purchase_item_id,
            "quantity_used": self.quantity_used,
            "unit_cost_cents": self.unit_cost_cents,
        }
