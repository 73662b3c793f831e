from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class User(db.Model):
    """
    Operator recorded on every movement, sale, purchase and shift.

    Authentication lives outside this package; the ledger only needs the
    identity and the stock locations the user works at.
    """
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    stock_locations = db.relationship(
        "StockLocation",
        secondary=lambda: user_stock_locations,
        lazy="selectin",
        order_by="StockLocation.id",
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "is_active": self.is_active,
            "stock_location_ids": [loc.id for loc in self.stock_locations],
        }


class StockLocation(db.Model):
    """A physical site with its own, independent stock."""
    __tablename__ = "stock_locations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<StockLocation id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


user_stock_locations = db.Table(
    "user_stock_locations",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id"), primary_key=True),
    db.Column("location_id", db.Integer, db.ForeignKey("stock_locations.id"), primary_key=True),
)


class Product(db.Model):
    """
    Product master data.

    NAME UNIQUENESS: names are unique ignoring case. name_normalized holds
    the lower-cased name and carries the unique index, so "Coffee" and
    "coffee" cannot coexist even under concurrent inserts.
    """
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    name_normalized = db.Column(db.String(255), nullable=False, unique=True)

    # Authoritative storage in cents
    purchase_price_cents = db.Column(db.Integer, nullable=False, default=0)
    sale_price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    location_prices = db.relationship(
        "ProductLocationPrice",
        back_populates="product",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def sale_price_for(self, location_id: int | None) -> int:
        """Per-location override when one exists, else the default sale price."""
        if location_id is not None:
            for price in self.location_prices:
                if price.location_id == location_id:
                    return price.sale_price_cents
        return self.sale_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "purchase_price_cents": self.purchase_price_cents,
            "sale_price_cents": self.sale_price_cents,
            "is_active": self.is_active,
            "notes": self.notes,
            "location_prices": {p.location_id: p.sale_price_cents for p in self.location_prices},
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductLocationPrice(db.Model):
    __tablename__ = "product_location_prices"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", name="uq_product_location_price"),
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False, index=True)
    sale_price_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product", back_populates="location_prices")


class PaymentMethod(db.Model):
    """
    Seed data ("efectivo", "transferencia").

    requires_reference: sales paid with this method must carry a transfer
    code that is unique across all sales.
    """
    __tablename__ = "payment_methods"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    requires_reference = db.Column(db.Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<PaymentMethod id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "requires_reference": self.requires_reference}
