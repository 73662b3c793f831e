"""
Sales Service - atomic sale posting

WHY: A sale touches the shift, the sale documents, the stock ledger and the
FIFO cost trail. All of it commits together or not at all.

STOCK CHECK: unlike purchases and transfers, sales do not require on-hand
stock unless SALE_REQUIRES_STOCK is enabled. The FIFO cost basis is always
required.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import exists, or_, select
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    PaymentMethod,
    Product,
    Sale,
    SaleItem,
    StockLocation,
    User,
    WarehouseStock,
    MOVEMENT_SALE,
)
from ..validation import (
    DuplicateReference,
    InsufficientStock,
    NotFoundError,
    ValidationError,
    coerce_cents,
    coerce_int,
    coerce_page,
    parse_line_items,
    require_text,
    search_pattern,
)
from .catalog_service import get_payment_method, get_product
from .concurrency import lock_for_update, run_in_transaction
from .costing_service import allocate_cost
from .ledger_service import record_movement
from .shift_service import _get_or_create_today_shift, resolve_user_location


def _check_transfer_code(transfer_code: str) -> None:
    existing = db.session.query(Sale.id).filter_by(transfer_code=transfer_code).first()
    if existing is not None:
        raise DuplicateReference(
            f"Transfer code {transfer_code!r} was already used",
            details={"sale_id": existing[0]},
        )


def _validate_on_hand(location_id: int, items: list[SaleItem]) -> None:
    product_totals: dict[int, int] = {}
    for item in items:
        product_totals[item.product_id] = product_totals.get(item.product_id, 0) + item.quantity

    # Locked in product order so concurrent multi-line sales cannot deadlock.
    balances = {
        row.product_id: row.quantity
        for row in lock_for_update(
            db.session.query(WarehouseStock).filter(
                WarehouseStock.location_id == location_id,
                WarehouseStock.product_id.in_(sorted(product_totals)),
            ).order_by(WarehouseStock.product_id.asc())
        ).all()
    }

    insufficient = []
    for product_id, qty in sorted(product_totals.items()):
        on_hand = balances.get(product_id, 0)
        if on_hand < qty:
            insufficient.append({
                "product_id": product_id,
                "requested_quantity": qty,
                "on_hand": on_hand,
            })

    if insufficient:
        raise InsufficientStock(
            "Insufficient inventory to post sale",
            details={"items": insufficient},
        )


def create_sale(
    user_id: int,
    items,
    total_cents: int,
    payment_method_name: str,
    transfer_code: str | None = None,
    location_id: int | None = None,
) -> Sale:
    """
    Post a sale in one transaction.

    Steps: today's shift for (user, location) -> Sale + SaleItems -> one
    negative SALE movement per item -> FIFO cost allocation per item.

    items: [{"product_id", "quantity", "unit_price_cents"?}]; a missing unit
    price defaults to the product's sale price at the location.
    location_id defaults to the user's single assigned location.

    Raises:
        ValidationError, NotFoundError, DuplicateReference,
        InsufficientStock (only with SALE_REQUIRES_STOCK),
        InsufficientCostBasis, ConcurrencyConflict
    """
    user_id = coerce_int(user_id, "user_id", minimum=1)
    lines = parse_line_items(items, price_required=False)
    total_cents = coerce_cents(total_cents, "total_cents")
    payment_method_name = require_text(payment_method_name, "payment_method_name")
    if transfer_code is not None:
        if not isinstance(transfer_code, str):
            raise ValidationError("transfer_code must be a string")
        transfer_code = transfer_code.strip() or None
        if transfer_code is not None and len(transfer_code) > 64:
            raise ValidationError("transfer_code cannot exceed 64 characters")
    if location_id is not None:
        location_id = coerce_int(location_id, "location_id", minimum=1)
    require_stock = current_app.config["SALE_REQUIRES_STOCK"]

    def _op():
        payment_method = get_payment_method(payment_method_name)
        if payment_method.requires_reference and not transfer_code:
            raise ValidationError(f"Payment method {payment_method.name!r} requires a transfer code")
        if transfer_code:
            _check_transfer_code(transfer_code)

        sale_location_id = resolve_user_location(user_id, location_id)

        sale_items = []
        for line in lines:
            product = get_product(line.product_id)
            unit_price = line.unit_price_cents
            if unit_price is None:
                unit_price = product.sale_price_for(sale_location_id)
            sale_items.append(SaleItem(
                product_id=line.product_id,
                location_id=sale_location_id,
                quantity=line.quantity,
                unit_price_cents=unit_price,
                total_cents=line.quantity * unit_price,
            ))

        expected_total = sum(item.total_cents for item in sale_items)
        if total_cents != expected_total:
            raise ValidationError(
                "total_cents does not match the sum of the items",
                details={"total_cents": total_cents, "expected_cents": expected_total},
            )

        if require_stock:
            _validate_on_hand(sale_location_id, sale_items)

        shift = _get_or_create_today_shift(user_id, sale_location_id)

        sale = Sale(
            user_id=user_id,
            shift_id=shift.id,
            payment_method_id=payment_method.id,
            transfer_code=transfer_code,
            total_cents=total_cents,
            items=sale_items,
        )
        db.session.add(sale)
        try:
            db.session.flush()
        except IntegrityError as exc:
            # Lost a race on the transfer code unique constraint.
            if transfer_code:
                raise DuplicateReference(f"Transfer code {transfer_code!r} was already used") from exc
            raise

        for item in sale.items:
            record_movement(
                product_id=item.product_id,
                location_id=item.location_id,
                quantity=-item.quantity,
                movement_type=MOVEMENT_SALE,
                reference=str(sale.id),
                user_id=user_id,
            )

        for item in sale.items:
            allocate_cost(item.id)

        return sale

    sale = run_in_transaction(_op)
    current_app.logger.info(
        "Posted sale %s (%d items, %d cents) at location %s",
        sale.id, len(lines), sale.total_cents, sale.items[0].location_id,
    )
    return sale


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def list_sales(
    *,
    location_id: int | None = None,
    user_id: int | None = None,
    search: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Sale], int]:
    """
    Sales history, newest first.

    Args:
        location_id: only sales with at least one item at this location
        user_id: only sales by this user
        search: case-insensitive match on seller, payment method, product
            or location name
        from_date / to_date: inclusive bounds on created_at

    Returns:
        Tuple of (page of sales, total count)
    """
    limit, offset = coerce_page(limit, offset)
    pattern = search_pattern(search)

    query = db.session.query(Sale)
    if location_id is not None:
        location_id = coerce_int(location_id, "location_id", minimum=1)
        query = query.filter(
            exists().where(SaleItem.sale_id == Sale.id, SaleItem.location_id == location_id)
        )
    if user_id is not None:
        query = query.filter(Sale.user_id == coerce_int(user_id, "user_id", minimum=1))
    if from_date:
        query = query.filter(Sale.created_at >= from_date)
    if to_date:
        query = query.filter(Sale.created_at <= to_date)
    if pattern:
        item_match = exists().where(
            SaleItem.sale_id == Sale.id,
            or_(
                SaleItem.product_id.in_(
                    select(Product.id).where(Product.name.ilike(pattern, escape="\\"))
                ),
                SaleItem.location_id.in_(
                    select(StockLocation.id).where(StockLocation.name.ilike(pattern, escape="\\"))
                ),
            ),
        )
        query = query.filter(or_(
            Sale.user_id.in_(select(User.id).where(User.name.ilike(pattern, escape="\\"))),
            Sale.payment_method_id.in_(
                select(PaymentMethod.id).where(PaymentMethod.name.ilike(pattern, escape="\\"))
            ),
            item_match,
        ))

    total = query.count()

    query = query.order_by(Sale.created_at.desc(), Sale.id.desc())
    query = query.offset(offset).limit(limit)

    return query.all(), total
