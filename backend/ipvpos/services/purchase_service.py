# Overview: Purchase posting; every purchase line becomes a FIFO lot and a PURCHASE movement.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import exists, or_, select

from ..extensions import db
from ..models import Product, Purchase, PurchaseItem, StockLocation, User, MOVEMENT_PURCHASE
from ..validation import (
    NotFoundError,
    check_total,
    coerce_int,
    coerce_page,
    parse_line_items,
    search_pattern,
)
from .catalog_service import get_location, get_product, get_user
from .concurrency import run_in_transaction
from .ledger_service import record_movement


def create_purchase(user_id: int, location_id: int, items, total_cents: int) -> Purchase:
    """
    Receive purchased stock into one location.

    Purchases only add stock, so no on-hand check applies. Inputs are
    validated before anything is written: non-empty items, positive
    quantities, non-negative unit costs and a total equal to the lines.

    items: [{"product_id", "quantity", "unit_price_cents"}] where the unit
    price is the unit cost of the lot.
    """
    user_id = coerce_int(user_id, "user_id", minimum=1)
    location_id = coerce_int(location_id, "location_id", minimum=1)
    lines = parse_line_items(items)
    total_cents = check_total(total_cents, lines)

    def _op():
        get_user(user_id)
        get_location(location_id)
        for line in lines:
            get_product(line.product_id)

        purchase = Purchase(
            user_id=user_id,
            total_cents=total_cents,
            items=[
                PurchaseItem(
                    product_id=line.product_id,
                    location_id=location_id,
                    quantity=line.quantity,
                    unit_cost_cents=line.unit_price_cents,
                    total_cost_cents=line.line_total_cents,
                )
                for line in lines
            ],
        )
        db.session.add(purchase)
        db.session.flush()

        for item in purchase.items:
            record_movement(
                product_id=item.product_id,
                location_id=item.location_id,
                quantity=item.quantity,
                movement_type=MOVEMENT_PURCHASE,
                reference=str(purchase.id),
                user_id=user_id,
            )
        return purchase

    purchase = run_in_transaction(_op)
    current_app.logger.info(
        "Posted purchase %s (%d lots, %d cents) into location %s",
        purchase.id, len(lines), purchase.total_cents, location_id,
    )
    return purchase


def get_purchase(purchase_id: int) -> Purchase:
    purchase = db.session.get(Purchase, purchase_id)
    if purchase is None:
        raise NotFoundError(f"Purchase {purchase_id} not found")
    return purchase


def list_purchases(
    *,
    location_id: int | None = None,
    user_id: int | None = None,
    search: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Purchase], int]:
    """
    Purchase history, newest first, as (page, total count).

    search matches the buyer, product or location name, ignoring case.
    """
    limit, offset = coerce_page(limit, offset)
    pattern = search_pattern(search)

    query = db.session.query(Purchase)
    if location_id is not None:
        location_id = coerce_int(location_id, "location_id", minimum=1)
        query = query.filter(
            exists().where(PurchaseItem.purchase_id == Purchase.id, PurchaseItem.location_id == location_id)
        )
    if user_id is not None:
        query = query.filter(Purchase.user_id == coerce_int(user_id, "user_id", minimum=1))
    if from_date:
        query = query.filter(Purchase.created_at >= from_date)
    if to_date:
        query = query.filter(Purchase.created_at <= to_date)
    if pattern:
        query = query.filter(or_(
            Purchase.user_id.in_(select(User.id).where(User.name.ilike(pattern, escape="\\"))),
            exists().where(
                PurchaseItem.purchase_id == Purchase.id,
                or_(
                    PurchaseItem.product_id.in_(
                        select(Product.id).where(Product.name.ilike(pattern, escape="\\"))
                    ),
                    PurchaseItem.location_id.in_(
                        select(StockLocation.id).where(StockLocation.name.ilike(pattern, escape="\\"))
                    ),
                ),
            ),
        ))

    total = query.count()

    query = query.order_by(Purchase.created_at.desc(), Purchase.id.desc())
    return query.offset(offset).limit(limit).all(), total
