# Overview: Manual inventory adjustments (shrinkage and found stock).

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import or_, select

from ..extensions import db
from ..models import InventoryAdjustment, Product, StockLocation, User, WarehouseStock, MOVEMENT_ADJUSTMENT
from ..validation import (
    InsufficientStock,
    NotFoundError,
    ValidationError,
    coerce_int,
    coerce_page,
    require_text,
    search_pattern,
)
from .catalog_service import get_location, get_product, get_user
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import record_movement
"""
Adjustment sign convention:
- quantity > 0: units removed from stock (shrinkage); movement posted as -quantity
- quantity < 0: units found; movement posted as +|quantity|
The IPV report adds the stored quantity to the outflow column unchanged.
"""


def create_adjustment(user_id: int, location_id: int, product_id: int, reason: str,
                      quantity: int) -> InventoryAdjustment:
    """
    Record an adjustment and post its movement.

    Raises:
        ValidationError: empty reason or zero quantity
        NotFoundError: the product has no stock row at the location
        InsufficientStock: the balance would go negative
    """
    user_id = coerce_int(user_id, "user_id", minimum=1)
    location_id = coerce_int(location_id, "location_id", minimum=1)
    product_id = coerce_int(product_id, "product_id", minimum=1)
    reason = require_text(reason, "reason", max_length=255)
    quantity = coerce_int(quantity, "quantity")
    if quantity == 0:
        raise ValidationError("quantity cannot be zero")

    def _op():
        get_user(user_id)
        get_location(location_id)
        get_product(product_id, require_active=False)

        stock = lock_for_update(
            db.session.query(WarehouseStock).filter_by(product_id=product_id, location_id=location_id)
        ).first()
        if stock is None:
            raise NotFoundError(
                f"Product {product_id} has no stock at location {location_id}",
                details={"product_id": product_id, "location_id": location_id},
            )
        if stock.quantity - quantity < 0:
            raise InsufficientStock(
                "adjustment would make on-hand negative",
                details={"product_id": product_id, "on_hand": stock.quantity, "adjustment": quantity},
            )

        adjustment = InventoryAdjustment(
            product_id=product_id,
            location_id=location_id,
            user_id=user_id,
            reason=reason,
            quantity=quantity,
        )
        db.session.add(adjustment)
        db.session.flush()

        record_movement(
            product_id=product_id,
            location_id=location_id,
            quantity=-quantity,
            movement_type=MOVEMENT_ADJUSTMENT,
            reference=str(adjustment.id),
            user_id=user_id,
        )
        return adjustment

    adjustment = run_in_transaction(_op)
    current_app.logger.info(
        "Posted adjustment %s: product %s at location %s, shrinkage %d (%s)",
        adjustment.id, product_id, location_id, quantity, reason,
    )
    return adjustment


def get_adjustment(adjustment_id: int) -> InventoryAdjustment:
    adjustment = db.session.get(InventoryAdjustment, adjustment_id)
    if adjustment is None:
        raise NotFoundError(f"Adjustment {adjustment_id} not found")
    return adjustment


def list_adjustments(
    *,
    location_id: int | None = None,
    product_id: int | None = None,
    user_id: int | None = None,
    search: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[InventoryAdjustment], int]:
    """
    Adjustment history, newest first.

    Args:
        search: case-insensitive match on the reason or on the user,
            product or location name

    Returns:
        Tuple of (page of adjustments, total count)
    """
    limit, offset = coerce_page(limit, offset)
    pattern = search_pattern(search)

    query = db.session.query(InventoryAdjustment)
    if location_id is not None:
        query = query.filter(
            InventoryAdjustment.location_id == coerce_int(location_id, "location_id", minimum=1)
        )
    if product_id is not None:
        query = query.filter(
            InventoryAdjustment.product_id == coerce_int(product_id, "product_id", minimum=1)
        )
    if user_id is not None:
        query = query.filter(InventoryAdjustment.user_id == coerce_int(user_id, "user_id", minimum=1))
    if from_date:
        query = query.filter(InventoryAdjustment.created_at >= from_date)
    if to_date:
        query = query.filter(InventoryAdjustment.created_at <= to_date)
    if pattern:
        query = query.filter(or_(
            InventoryAdjustment.reason.ilike(pattern, escape="\\"),
            InventoryAdjustment.user_id.in_(select(User.id).where(User.name.ilike(pattern, escape="\\"))),
            InventoryAdjustment.product_id.in_(
                select(Product.id).where(Product.name.ilike(pattern, escape="\\"))
            ),
            InventoryAdjustment.location_id.in_(
                select(StockLocation.id).where(StockLocation.name.ilike(pattern, escape="\\"))
            ),
        ))

    total = query.count()

    query = query.order_by(InventoryAdjustment.created_at.desc(), InventoryAdjustment.id.desc())
    query = query.offset(offset).limit(limit)

    return query.all(), total
