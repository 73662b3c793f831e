# Overview: Service-layer operations for products, stock locations, users and payment methods.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import (
    PaymentMethod,
    Product,
    ProductLocationPrice,
    StockLocation,
    User,
    WarehouseStock,
)
from ..validation import (
    DuplicateReference,
    NotFoundError,
    ValidationError,
    coerce_cents,
    require_text,
)
from .concurrency import run_in_transaction


# =============================================================================
# LOOKUPS (shared by the orchestrators)
# =============================================================================

def get_user(user_id: int, *, require_active: bool = True) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    if require_active and not user.is_active:
        raise ValidationError(f"User {user_id} is inactive")
    return user


def get_location(location_id: int, *, require_active: bool = True) -> StockLocation:
    location = db.session.get(StockLocation, location_id)
    if location is None:
        raise NotFoundError(f"Stock location {location_id} not found")
    if require_active and not location.is_active:
        raise ValidationError(f"Stock location {location_id} is inactive")
    return location


def get_product(product_id: int, *, require_active: bool = True) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if require_active and not product.is_active:
        raise ValidationError(f"Product {product_id} is inactive")
    return product


def get_payment_method(name: str) -> PaymentMethod:
    method = db.session.query(PaymentMethod).filter(
        func.lower(PaymentMethod.name) == name.strip().lower()
    ).first()
    if method is None:
        raise NotFoundError(f"Payment method {name!r} not found")
    return method


# =============================================================================
# STOCK LOCATIONS
# =============================================================================

def _check_location_name(name: str, exclude_id: int | None = None) -> None:
    query = db.session.query(StockLocation).filter(StockLocation.name == name)
    if exclude_id is not None:
        query = query.filter(StockLocation.id != exclude_id)
    if query.first() is not None:
        raise DuplicateReference(f"A stock location named {name!r} already exists")


def create_stock_location(name: str, is_active: bool = True) -> StockLocation:
    name = require_text(name, "name", max_length=120)

    def _op():
        _check_location_name(name)
        location = StockLocation(name=name, is_active=bool(is_active))
        db.session.add(location)
        db.session.flush()
        return location

    return run_in_transaction(_op)


def update_stock_location(location_id: int, *, name: str | None = None,
                          is_active: bool | None = None) -> StockLocation:
    if name is not None:
        name = require_text(name, "name", max_length=120)

    def _op():
        location = get_location(location_id, require_active=False)
        if name is not None:
            _check_location_name(name, exclude_id=location.id)
            location.name = name
        if is_active is not None:
            location.is_active = bool(is_active)
        db.session.flush()
        return location

    return run_in_transaction(_op)


def list_location_stock(location_id: int) -> list[dict]:
    """Products with a balance row at the location, by product name."""
    get_location(location_id, require_active=False)
    rows = db.session.query(WarehouseStock, Product).join(
        Product, Product.id == WarehouseStock.product_id
    ).filter(
        WarehouseStock.location_id == location_id
    ).order_by(Product.name.asc()).all()

    return [
        {
            "product_id": product.id,
            "name": product.name,
            "quantity": stock.quantity,
            "sale_price_cents": product.sale_price_for(location_id),
        }
        for stock, product in rows
    ]


# =============================================================================
# PRODUCTS
# =============================================================================

def _normalize_name(name: str) -> str:
    return name.strip().lower()


def _check_product_name(name: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Product).filter(Product.name_normalized == _normalize_name(name))
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    existing = query.first()
    if existing is not None:
        raise DuplicateReference(
            f"A product named {existing.name!r} already exists",
            details={"product_id": existing.id},
        )


def create_product(
    name: str,
    purchase_price_cents: int,
    sale_price_cents: int,
    *,
    is_active: bool = True,
    notes: str | None = None,
) -> Product:
    """Create a product. Names are unique ignoring case."""
    name = require_text(name, "name", max_length=255)
    purchase_price_cents = coerce_cents(purchase_price_cents, "purchase_price_cents")
    sale_price_cents = coerce_cents(sale_price_cents, "sale_price_cents")

    def _op():
        _check_product_name(name)
        product = Product(
            name=name,
            name_normalized=_normalize_name(name),
            purchase_price_cents=purchase_price_cents,
            sale_price_cents=sale_price_cents,
            is_active=bool(is_active),
            notes=notes,
        )
        db.session.add(product)
        db.session.flush()
        return product

    product = run_in_transaction(_op)
    current_app.logger.info("Created product %s (%s)", product.id, product.name)
    return product


UPDATABLE_PRODUCT_FIELDS = {"name", "purchase_price_cents", "sale_price_cents", "is_active", "notes"}


def update_product(product_id: int, **fields) -> Product:
    unknown = set(fields) - UPDATABLE_PRODUCT_FIELDS
    if unknown:
        raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    if "name" in fields:
        fields["name"] = require_text(fields["name"], "name", max_length=255)
    for key in ("purchase_price_cents", "sale_price_cents"):
        if key in fields:
            fields[key] = coerce_cents(fields[key], key)

    def _op():
        product = get_product(product_id, require_active=False)
        if "name" in fields:
            _check_product_name(fields["name"], exclude_id=product.id)
            product.name_normalized = _normalize_name(fields["name"])
        for key, value in fields.items():
            setattr(product, key, bool(value) if key == "is_active" else value)
        db.session.flush()
        return product

    return run_in_transaction(_op)


def set_location_price(product_id: int, location_id: int, sale_price_cents: int) -> ProductLocationPrice:
    """Set (or replace) the sale price of a product at one location."""
    sale_price_cents = coerce_cents(sale_price_cents, "sale_price_cents")

    def _op():
        get_product(product_id, require_active=False)
        get_location(location_id, require_active=False)
        price = db.session.query(ProductLocationPrice).filter_by(
            product_id=product_id,
            location_id=location_id,
        ).first()
        if price is None:
            price = ProductLocationPrice(product_id=product_id, location_id=location_id)
            db.session.add(price)
        price.sale_price_cents = sale_price_cents
        db.session.flush()
        return price

    return run_in_transaction(_op)


def get_sale_price(product_id: int, location_id: int | None = None) -> int:
    return get_product(product_id, require_active=False).sale_price_for(location_id)


# =============================================================================
# USERS AND PAYMENT METHODS
# =============================================================================

def create_user(name: str, email: str) -> User:
    name = require_text(name, "name", max_length=120)
    email = require_text(email, "email", max_length=255).lower()

    def _op():
        if db.session.query(User).filter_by(email=email).first() is not None:
            raise DuplicateReference(f"A user with email {email!r} already exists")
        user = User(name=name, email=email, is_active=True)
        db.session.add(user)
        db.session.flush()
        return user

    return run_in_transaction(_op)


def assign_user_location(user_id: int, location_id: int) -> User:
    """Assign a stock location to a user (idempotent)."""
    def _op():
        user = get_user(user_id, require_active=False)
        location = get_location(location_id)
        if location not in user.stock_locations:
            user.stock_locations.append(location)
        db.session.flush()
        return user

    return run_in_transaction(_op)


def ensure_payment_methods() -> list[PaymentMethod]:
    """
    Seed the configured payment methods.

    Safe to call repeatedly (idempotent); existing rows keep their flags.
    """
    def _op():
        methods = []
        for name, requires_reference in current_app.config["DEFAULT_PAYMENT_METHODS"]:
            method = db.session.query(PaymentMethod).filter_by(name=name).first()
            if method is None:
                method = PaymentMethod(name=name, requires_reference=requires_reference)
                db.session.add(method)
            methods.append(method)
        db.session.flush()
        return methods

    return run_in_transaction(_op)
