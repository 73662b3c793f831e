# Overview: Daily IPV reconciliation per location (initial + inbound - outflow - sold = remaining).

from __future__ import annotations

from datetime import datetime

from sqlalchemy import exists, func

from ..extensions import db
from ..models import (
    InventoryAdjustment,
    InventoryMovement,
    PaymentMethod,
    Product,
    Purchase,
    PurchaseItem,
    Sale,
    SaleItem,
    SaleItemCostAllocation,
    Shift,
    ShiftStockSnapshot,
    User,
    WarehouseStock,
    MOVEMENT_TRANSFER,
    SNAPSHOT_END,
    SNAPSHOT_START,
)
from ..time_utils import day_bounds, parse_day, to_utc_z
from ..validation import ValidationError
from .catalog_service import get_location
"""
IPV report semantics, per product, for one location and one calendar day:

- Window: from the opening of the day's first shift to the close of its last
  closed shift. With no shifts the whole calendar day is used; while any
  shift of the day is still open, or once a sale was posted after the last
  close, the window runs to the end of the day.
- I (initial)  = START snapshot of the day's first shift
- E (inbound)  = purchases received + inbound transfers, inside the window
- M (outflow)  = adjustment shrinkage + outbound transfers, inside the window
- V (sold)     = sale item quantities of the day up to the window end
- R (remaining)= I + E - V - M
- T (revenue)  = sum of quantity * actual unit price
- G (profit)   = T - FIFO cost of the same sale items
- closing      = END snapshot of the last closed shift, if any

Stock received before the first shift opened is already part of its START
snapshot, so the window excludes it from E. The report never raises for
missing data; it returns zeros.
"""


class _Window:
    def __init__(self, start: datetime, end: datetime, start_exclusive: bool):
        self.start = start
        self.end = end
        self.start_exclusive = start_exclusive

    def apply(self, query, column):
        if self.start_exclusive:
            query = query.filter(column > self.start)
        else:
            query = query.filter(column >= self.start)
        return query.filter(column <= self.end)


def _day_shifts(location_id: int, day) -> list[Shift]:
    return db.session.query(Shift).filter(
        Shift.stock_location_id == location_id,
        Shift.shift_date == day,
    ).order_by(Shift.opened_at.asc(), Shift.id.asc()).all()


def _sold_after(location_id: int, moment: datetime, day_end: datetime) -> bool:
    return bool(db.session.query(
        exists().where(
            SaleItem.sale_id == Sale.id,
            SaleItem.location_id == location_id,
            Sale.created_at > moment,
            Sale.created_at <= day_end,
        )
    ).scalar())


def _resolve_window(location_id: int, shifts: list[Shift], day_start: datetime, day_end: datetime):
    if not shifts:
        return _Window(day_start, day_end, start_exclusive=False), None, None

    first = shifts[0]
    closed = [s for s in shifts if s.end_time is not None]
    last_closed = max(closed, key=lambda s: s.end_time) if closed else None
    any_open = len(closed) < len(shifts)

    if any_open or last_closed is None:
        end = day_end
    elif _sold_after(location_id, last_closed.end_time, day_end):
        # Sales posted on a closed shift reopen the window to the end of the day
        end = day_end
    else:
        end = last_closed.end_time
    return _Window(first.opened_at, end, start_exclusive=True), first, (None if any_open else last_closed)


def _snapshot_totals(shift: Shift | None, snapshot_type: str) -> dict[int, int]:
    if shift is None:
        return {}
    rows = db.session.query(
        ShiftStockSnapshot.product_id,
        func.sum(ShiftStockSnapshot.quantity),
    ).filter(
        ShiftStockSnapshot.shift_id == shift.id,
        ShiftStockSnapshot.type == snapshot_type,
    ).group_by(ShiftStockSnapshot.product_id).all()
    return {product_id: int(qty or 0) for product_id, qty in rows}


def _transfer_totals(location_id: int, window: _Window, inbound: bool) -> dict[int, int]:
    query = db.session.query(
        InventoryMovement.product_id,
        func.sum(InventoryMovement.quantity),
    ).filter(
        InventoryMovement.location_id == location_id,
        InventoryMovement.movement_type == MOVEMENT_TRANSFER,
        InventoryMovement.quantity > 0 if inbound else InventoryMovement.quantity < 0,
    )
    query = window.apply(query, InventoryMovement.created_at)
    rows = query.group_by(InventoryMovement.product_id).all()
    return {product_id: abs(int(qty or 0)) for product_id, qty in rows}


def _purchase_totals(location_id: int, window: _Window) -> dict[int, int]:
    query = db.session.query(
        PurchaseItem.product_id,
        func.sum(PurchaseItem.quantity),
    ).join(Purchase, Purchase.id == PurchaseItem.purchase_id).filter(
        PurchaseItem.location_id == location_id,
    )
    query = window.apply(query, Purchase.created_at)
    rows = query.group_by(PurchaseItem.product_id).all()
    return {product_id: int(qty or 0) for product_id, qty in rows}


def _adjustment_totals(location_id: int, window: _Window) -> dict[int, int]:
    query = db.session.query(
        InventoryAdjustment.product_id,
        func.sum(InventoryAdjustment.quantity),
    ).filter(InventoryAdjustment.location_id == location_id)
    query = window.apply(query, InventoryAdjustment.created_at)
    rows = query.group_by(InventoryAdjustment.product_id).all()
    return {product_id: int(qty or 0) for product_id, qty in rows}


def _sales_query(columns, location_id: int, day_start: datetime, day_end: datetime):
    return db.session.query(*columns).join(Sale, Sale.id == SaleItem.sale_id).filter(
        SaleItem.location_id == location_id,
        Sale.created_at >= day_start,
        Sale.created_at <= day_end,
    )


def _sales_totals(location_id: int, day_start: datetime, day_end: datetime) -> dict[int, tuple[int, int]]:
    rows = _sales_query(
        (SaleItem.product_id, func.sum(SaleItem.quantity), func.sum(SaleItem.total_cents)),
        location_id, day_start, day_end,
    ).group_by(SaleItem.product_id).all()
    return {product_id: (int(qty or 0), int(revenue or 0)) for product_id, qty, revenue in rows}


def _cost_totals(location_id: int, day_start: datetime, day_end: datetime) -> dict[int, int]:
    rows = _sales_query(
        (
            SaleItem.product_id,
            func.sum(SaleItemCostAllocation.quantity_used * SaleItemCostAllocation.unit_cost_cents),
        ),
        location_id, day_start, day_end,
    ).join(
        SaleItemCostAllocation, SaleItemCostAllocation.sale_item_id == SaleItem.id
    ).group_by(SaleItem.product_id).all()
    return {product_id: int(cost or 0) for product_id, cost in rows}


def _payment_totals(location_id: int, day_start: datetime, day_end: datetime) -> dict[str, int]:
    rows = _sales_query(
        (PaymentMethod.name, func.sum(SaleItem.total_cents)),
        location_id, day_start, day_end,
    ).join(
        PaymentMethod, PaymentMethod.id == Sale.payment_method_id
    ).group_by(PaymentMethod.name).all()
    totals = {method.name: 0 for method in db.session.query(PaymentMethod).order_by(PaymentMethod.id)}
    for name, revenue in rows:
        totals[name] = int(revenue or 0)
    return totals


def build_report(location_id: int, day=None) -> dict:
    """
    IPV reconciliation of one location for one calendar day.

    day: date, "YYYY-MM-DD" string or None (today).
    """
    location = get_location(location_id, require_active=False)
    try:
        day = parse_day(day)
    except ValueError as exc:
        raise ValidationError(str(exc))
    day_start, day_end = day_bounds(day)

    shifts = _day_shifts(location.id, day)
    window, first_shift, last_closed = _resolve_window(location.id, shifts, day_start, day_end)
    # Sales share the window end; nothing is sold before the first shift opens
    sales_end = window.end

    initial = _snapshot_totals(first_shift, SNAPSHOT_START)
    closing = _snapshot_totals(last_closed, SNAPSHOT_END)
    transfers_in = _transfer_totals(location.id, window, inbound=True)
    transfers_out = _transfer_totals(location.id, window, inbound=False)
    purchases = _purchase_totals(location.id, window)
    adjustments = _adjustment_totals(location.id, window)
    sales = _sales_totals(location.id, day_start, sales_end)
    costs = _cost_totals(location.id, day_start, sales_end)

    stocked = {
        row.product_id
        for row in db.session.query(WarehouseStock.product_id).filter_by(location_id=location.id)
    }
    product_ids = stocked | set(initial) | set(transfers_in) | set(transfers_out) \
        | set(purchases) | set(adjustments) | set(sales)
    products = db.session.query(Product).filter(
        Product.id.in_(product_ids)
    ).order_by(Product.name.asc()).all() if product_ids else []

    rows = []
    totals = {"revenue_cents": 0, "cost_cents": 0, "profit_cents": 0}
    for product in products:
        pid = product.id
        i = initial.get(pid, 0)
        e = purchases.get(pid, 0) + transfers_in.get(pid, 0)
        m = adjustments.get(pid, 0) + transfers_out.get(pid, 0)
        v, revenue = sales.get(pid, (0, 0))
        cost = costs.get(pid, 0)
        profit = revenue - cost

        rows.append({
            "product_id": pid,
            "name": product.name,
            "purchase_price_cents": product.purchase_price_cents,
            "sale_price_cents": product.sale_price_for(location.id),
            "initial": i,
            "inbound": e,
            "outflow": m,
            "sold": v,
            "remaining": i + e - v - m,
            "closing": closing.get(pid) if last_closed is not None else None,
            "revenue_cents": revenue,
            "cost_cents": cost,
            "profit_cents": profit,
        })
        totals["revenue_cents"] += revenue
        totals["cost_cents"] += cost
        totals["profit_cents"] += profit

    totals["by_payment_method"] = _payment_totals(location.id, day_start, sales_end)

    user_ids = {s.user_id for s in shifts}
    shift_users = [
        u.name for u in db.session.query(User).filter(User.id.in_(user_ids)).order_by(User.name)
    ] if user_ids else []

    return {
        "location_id": location.id,
        "location_name": location.name,
        "date": day.isoformat(),
        "window_start": to_utc_z(window.start),
        "window_end": to_utc_z(window.end),
        "shift_ids": [s.id for s in shifts],
        "shift_users": shift_users,
        "rows": rows,
        "totals": totals,
    }
