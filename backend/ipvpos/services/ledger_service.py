# Overview: Ledger writer; appends inventory movements and maintains stock balances.

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InventoryMovement, WarehouseStock, MOVEMENT_TYPES
from ..validation import ValidationError
from .concurrency import lock_for_update, run_in_transaction
"""
Inventory Ledger Invariants (authoritative)

- InventoryMovement is the system of record: append-only, never updated or deleted.
- WarehouseStock is a cache: for every (product, location),
    WarehouseStock.quantity == SUM(InventoryMovement.quantity)
- Both writes happen in the caller's transaction; record_movement never commits.
- WarehouseStock rows are locked before they are incremented, and the increment
  is computed by the database (quantity = quantity + delta).
"""


def _lock_stock_row(product_id: int, location_id: int) -> WarehouseStock | None:
    return lock_for_update(
        db.session.query(WarehouseStock).filter_by(product_id=product_id, location_id=location_id)
    ).first()


def record_movement(
    *,
    product_id: int,
    location_id: int,
    quantity: int,
    movement_type: str,
    reference: str | None,
    user_id: int | None,
) -> InventoryMovement:
    """
    Append one movement and apply it to the running balance.

    Creates the WarehouseStock row with the movement quantity when the pair
    has none yet. Must be called inside run_in_transaction.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"unknown movement type {movement_type!r}")
    if quantity == 0:
        raise ValidationError("movement quantity cannot be zero")

    movement = InventoryMovement(
        product_id=product_id,
        location_id=location_id,
        quantity=quantity,
        movement_type=movement_type,
        reference=reference,
        user_id=user_id,
    )
    db.session.add(movement)

    stock = _lock_stock_row(product_id, location_id)
    if stock is None:
        try:
            with db.session.begin_nested():
                db.session.add(
                    WarehouseStock(product_id=product_id, location_id=location_id, quantity=quantity)
                )
        except IntegrityError:
            # Another transaction created the row first; fall through and increment it.
            stock = _lock_stock_row(product_id, location_id)
            if stock is None:
                raise
    if stock is not None:
        stock.quantity = WarehouseStock.quantity + quantity

    db.session.flush()
    return movement


def get_stock(product_id: int, location_id: int) -> int:
    """Current cached balance; 0 when the pair never had a movement."""
    quantity = db.session.query(WarehouseStock.quantity).filter_by(
        product_id=product_id,
        location_id=location_id,
    ).scalar()
    return int(quantity or 0)


def _movement_sums() -> dict[tuple[int, int], int]:
    rows = db.session.query(
        InventoryMovement.product_id,
        InventoryMovement.location_id,
        func.coalesce(func.sum(InventoryMovement.quantity), 0),
    ).group_by(InventoryMovement.product_id, InventoryMovement.location_id).all()
    return {(product_id, location_id): int(total) for product_id, location_id, total in rows}


def audit_balances() -> list[dict]:
    """
    Compare every cached balance with the movement log.

    Returns one dict per mismatching (product, location), including pairs
    present on only one side. An empty list means the ledger is consistent.
    """
    expected = _movement_sums()
    cached = {
        (row.product_id, row.location_id): row.quantity
        for row in db.session.query(WarehouseStock).all()
    }

    mismatches = []
    for key in sorted(set(expected) | set(cached)):
        ledger_qty = expected.get(key, 0)
        cached_qty = cached.get(key)
        if cached_qty is None or cached_qty != ledger_qty:
            mismatches.append({
                "product_id": key[0],
                "location_id": key[1],
                "cached_quantity": cached_qty,
                "ledger_quantity": ledger_qty,
            })
    return mismatches


def rebuild_balances() -> int:
    """
    Re-derive every WarehouseStock row from the movement log.

    Returns the number of rows created or corrected.
    """
    def _op():
        expected = _movement_sums()
        stocks = {
            (row.product_id, row.location_id): row
            for row in lock_for_update(db.session.query(WarehouseStock)).all()
        }

        corrected = 0
        for key, stock in stocks.items():
            ledger_qty = expected.get(key, 0)
            if stock.quantity != ledger_qty:
                stock.quantity = ledger_qty
                corrected += 1
        for key, ledger_qty in expected.items():
            if key not in stocks:
                db.session.add(WarehouseStock(product_id=key[0], location_id=key[1], quantity=ledger_qty))
                corrected += 1
        db.session.flush()
        return corrected

    return run_in_transaction(_op)
