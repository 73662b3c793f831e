"""
Shift Management Service

WHY: Each working day at a location is bracketed by stock snapshots so the
daily IPV report can be reconciled without replaying the movement history.

DESIGN PRINCIPLES:
- At most one shift per (user, location, calendar day); creation is idempotent
- START snapshots are written when the shift is created, END snapshots when
  it is closed
- OPEN -> CLOSED happens once; closed shifts are immutable
"""

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Shift, ShiftStockSnapshot, WarehouseStock, SNAPSHOT_START, SNAPSHOT_END
from ..time_utils import day_bounds, parse_day, today, utcnow
from ..validation import NoOpenShift, NotFoundError, ValidationError, coerce_cents
from .catalog_service import get_location, get_user
from .concurrency import lock_for_update, run_in_transaction


def _write_snapshots(shift: Shift, snapshot_type: str) -> list[ShiftStockSnapshot]:
    """Snapshot every product with a balance row at the shift's location."""
    stocks = db.session.query(WarehouseStock).filter_by(
        location_id=shift.stock_location_id
    ).order_by(WarehouseStock.product_id).all()

    snapshots = [
        ShiftStockSnapshot(
            shift_id=shift.id,
            product_id=stock.product_id,
            location_id=shift.stock_location_id,
            quantity=stock.quantity,
            type=snapshot_type,
        )
        for stock in stocks
    ]
    db.session.add_all(snapshots)
    db.session.flush()
    return snapshots


def _find_today_shift(user_id: int, location_id: int, day: date) -> Shift | None:
    return db.session.query(Shift).filter_by(
        user_id=user_id,
        stock_location_id=location_id,
        shift_date=day,
    ).first()


def _get_or_create_today_shift(user_id: int, location_id: int, start_amount_cents: int = 0) -> Shift:
    """
    Inner form: runs inside the caller's transaction and never commits.

    A concurrent creator of the same (user, location, day) loses on the
    unique constraint inside the savepoint and returns the winner's row.
    """
    day = today()
    shift = _find_today_shift(user_id, location_id, day)
    if shift is not None:
        return shift

    start_time, _ = day_bounds(day)
    try:
        with db.session.begin_nested():
            shift = Shift(
                user_id=user_id,
                stock_location_id=location_id,
                shift_date=day,
                start_time=start_time,
                start_amount_cents=start_amount_cents,
                opened_at=utcnow(),
            )
            db.session.add(shift)
            db.session.flush()
            _write_snapshots(shift, SNAPSHOT_START)
    except IntegrityError:
        shift = _find_today_shift(user_id, location_id, day)
        if shift is None:
            raise
        return shift

    current_app.logger.debug(
        "Opening shift %s for user %s at location %s", shift.id, user_id, location_id
    )
    return shift


def get_or_create_today_shift(user_id: int, location_id: int, start_amount_cents: int = 0) -> Shift:
    """Return today's shift of the user at the location, creating it (with START snapshots) if absent."""
    start_amount_cents = coerce_cents(start_amount_cents, "start_amount_cents")

    def _op():
        get_user(user_id)
        get_location(location_id)
        return _get_or_create_today_shift(user_id, location_id, start_amount_cents)

    shift = run_in_transaction(_op)
    current_app.logger.info(
        "Shift %s is open for user %s at location %s", shift.id, user_id, location_id
    )
    return shift


def _ensure_location_shift(user_id: int, location_id: int) -> Shift:
    """Any open shift of today at the location; otherwise the user's own shift of today."""
    shift = db.session.query(Shift).filter(
        Shift.stock_location_id == location_id,
        Shift.shift_date == today(),
        Shift.end_time.is_(None),
    ).order_by(Shift.opened_at.asc(), Shift.id.asc()).first()
    if shift is not None:
        return shift
    return _get_or_create_today_shift(user_id, location_id)


def ensure_location_shift(user_id: int, location_id: int) -> Shift:
    """Today's shift at the location, whoever opened it; opens one for the user if none."""
    def _op():
        get_user(user_id)
        get_location(location_id)
        return _ensure_location_shift(user_id, location_id)

    return run_in_transaction(_op)


def resolve_user_location(user_id: int, location_id: int | None = None) -> int:
    """
    Location a user operates at.

    An explicit location must be one of the user's assignments (users with
    no assignments may operate anywhere). Without one, the user's single
    assigned location is used; none or several is an error.
    """
    user = get_user(user_id)
    assigned = [loc.id for loc in user.stock_locations]

    if location_id is not None:
        get_location(location_id)
        if assigned and location_id not in assigned:
            raise ValidationError(
                f"User {user_id} is not assigned to stock location {location_id}",
                details={"assigned_location_ids": assigned},
            )
        return location_id

    if not assigned:
        raise ValidationError(f"User {user_id} has no assigned stock location")
    if len(assigned) > 1:
        raise ValidationError(
            f"User {user_id} is assigned to several stock locations; specify one",
            details={"assigned_location_ids": assigned},
        )
    get_location(assigned[0])
    return assigned[0]


def close_shift(location_id: int) -> Shift:
    """
    Close the most recent open shift at the location and write END snapshots.

    Raises:
        NoOpenShift: if the location has no open shift
    """
    def _op():
        get_location(location_id, require_active=False)
        shift = lock_for_update(
            db.session.query(Shift).filter(
                Shift.stock_location_id == location_id,
                Shift.end_time.is_(None),
            ).order_by(Shift.start_time.desc(), Shift.opened_at.desc(), Shift.id.desc())
        ).first()
        if shift is None:
            raise NoOpenShift(f"No open shift at stock location {location_id}")

        shift.end_time = utcnow()
        _write_snapshots(shift, SNAPSHOT_END)
        return shift

    shift = run_in_transaction(_op)
    current_app.logger.info("Closed shift %s at location %s", shift.id, location_id)
    return shift


def shift_summary(shift_id: int) -> dict:
    shift = db.session.get(Shift, shift_id)
    if shift is None:
        raise NotFoundError(f"Shift {shift_id} not found")
    return shift.to_dict(include_snapshots=True)


def list_shifts(location_id: int | None = None, day=None) -> list[dict]:
    """Shifts (with snapshots), newest first, optionally by location and day."""
    query = db.session.query(Shift)
    if location_id is not None:
        query = query.filter(Shift.stock_location_id == location_id)
    if day is not None:
        try:
            query = query.filter(Shift.shift_date == parse_day(day))
        except ValueError as exc:
            raise ValidationError(str(exc))
    shifts = query.order_by(Shift.opened_at.desc(), Shift.id.desc()).all()
    return [shift.to_dict(include_snapshots=True) for shift in shifts]
