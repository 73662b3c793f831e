# Overview: FIFO cost allocation of sale items against purchase lots.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Purchase, PurchaseItem, SaleItem, SaleItemCostAllocation
from ..validation import ConcurrencyConflict, InsufficientCostBasis, NotFoundError
from .concurrency import lock_for_update
"""
FIFO Costing Invariants (authoritative)

- Lots are PurchaseItem rows of the sold product from EVERY location, oldest
  Purchase.created_at first (ties by lot id). Stock moves between locations
  through transfers, so the cost basis is tracked per product, not per location.
- For every lot: SUM(quantity_used) <= PurchaseItem.quantity.
- For every committed sale item: SUM(quantity_used) == SaleItem.quantity.
- A sale item that cannot be fully costed fails the whole sale.

Concurrency:
- Candidate lots are locked (FOR UPDATE OF purchase_items) before their used
  quantities are read.
- After the new allocations are flushed, each touched lot is re-checked; an
  over-consumed lot raises ConcurrencyConflict so the transaction retries.
"""


def _used_by_lot(lot_ids: list[int]) -> dict[int, int]:
    if not lot_ids:
        return {}
    rows = db.session.query(
        SaleItemCostAllocation.purchase_item_id,
        func.coalesce(func.sum(SaleItemCostAllocation.quantity_used), 0),
    ).filter(
        SaleItemCostAllocation.purchase_item_id.in_(lot_ids)
    ).group_by(SaleItemCostAllocation.purchase_item_id).all()
    return {lot_id: int(used) for lot_id, used in rows}


def _fifo_lots(product_id: int) -> list[PurchaseItem]:
    query = db.session.query(PurchaseItem).join(
        Purchase, Purchase.id == PurchaseItem.purchase_id
    ).filter(
        PurchaseItem.product_id == product_id
    ).order_by(
        Purchase.created_at.asc(),
        PurchaseItem.id.asc(),
    )
    return lock_for_update(query, of=PurchaseItem).all()


def _verify_lots(lots: list[PurchaseItem]) -> None:
    used = _used_by_lot([lot.id for lot in lots])
    for lot in lots:
        if used.get(lot.id, 0) > lot.quantity:
            raise ConcurrencyConflict(
                f"Purchase lot {lot.id} over-allocated",
                details={"purchase_item_id": lot.id, "quantity": lot.quantity, "used": used.get(lot.id, 0)},
            )


def allocate_cost(sale_item_id: int) -> list[SaleItemCostAllocation]:
    """
    Allocate cost to one sale item, consuming lots oldest first.

    Must run inside the sale's transaction. Raises InsufficientCostBasis when
    the product's lots cannot cover the sold quantity.
    """
    sale_item = db.session.get(SaleItem, sale_item_id)
    if sale_item is None:
        raise NotFoundError(f"Sale item {sale_item_id} not found")

    lots = _fifo_lots(sale_item.product_id)
    used = _used_by_lot([lot.id for lot in lots])

    remaining = sale_item.quantity
    allocations: list[SaleItemCostAllocation] = []
    touched: list[PurchaseItem] = []
    for lot in lots:
        if remaining == 0:
            break
        available = lot.quantity - used.get(lot.id, 0)
        if available <= 0:
            continue

        take = min(available, remaining)
        allocation = SaleItemCostAllocation(
            sale_item_id=sale_item.id,
            purchase_item_id=lot.id,
            quantity_used=take,
            unit_cost_cents=lot.unit_cost_cents,
        )
        db.session.add(allocation)
        allocations.append(allocation)
        touched.append(lot)
        remaining -= take

    if remaining > 0:
        raise InsufficientCostBasis(
            f"Not enough purchased units to cost product {sale_item.product_id}",
            details={
                "product_id": sale_item.product_id,
                "requested_quantity": sale_item.quantity,
                "missing_quantity": remaining,
            },
        )

    db.session.flush()
    _verify_lots(touched)
    return allocations


def lot_remaining(purchase_item_id: int) -> int:
    """Units of a lot not yet allocated to any sale item."""
    lot = db.session.get(PurchaseItem, purchase_item_id)
    if lot is None:
        raise NotFoundError(f"Purchase item {purchase_item_id} not found")
    return lot.quantity - _used_by_lot([lot.id]).get(lot.id, 0)


def sale_item_cost_cents(sale_item_id: int) -> int:
    """FIFO cost of a sale item: sum of quantity_used * unit_cost_cents."""
    total = db.session.query(
        func.coalesce(
            func.sum(SaleItemCostAllocation.quantity_used * SaleItemCostAllocation.unit_cost_cents),
            0,
        )
    ).filter(SaleItemCostAllocation.sale_item_id == sale_item_id).scalar()
    return int(total or 0)
