from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Purchase(db.Model):
    """
    Purchase document. Its created_at is the FIFO ordering key of every lot
    (PurchaseItem) it contains.
    """
    __tablename__ = "purchases"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    total_cents = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    items = db.relationship(
        "PurchaseItem",
        back_populates="purchase",
        lazy="selectin",
        order_by="PurchaseItem.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "total_cents": self.total_cents,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class PurchaseItem(db.Model):
    """
    A lot: units bought at one unit cost, consumed by sales in FIFO order.

    quantity and unit_cost_cents never change after creation; what remains
    of a lot is quantity minus the SaleItemCostAllocation rows against it.
    """
    __tablename__ = "purchase_items"
    __table_args__ = (
        db.Index("ix_purchase_items_product_location", "product_id", "location_id"),
        db.CheckConstraint("quantity > 0", name="ck_purchase_items_quantity_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    total_cost_cents = db.Column(db.Integer, nullable=False)

    purchase = db.relationship("Purchase", back_populates="items")

    @property
    def created_at(self):
        return self.purchase.created_at if self.purchase else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "total_cost_cents": self.total_cost_cents,
            "created_at": to_utc_z(self.created_at),
        }
