from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


SNAPSHOT_START = "START"
SNAPSHOT_END = "END"


class Shift(db.Model):
    """
    Working period of one user at one location for one calendar day.

    LIFECYCLE: OPEN (end_time NULL) -> CLOSED (end_time set). Closing happens
    once; closed shifts are never modified.

    start_time is the start of shift_date; opened_at is the wall-clock time
    the row was created and bounds the reconciliation window.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.UniqueConstraint("user_id", "stock_location_id", "shift_date", name="uq_shift_user_location_day"),
        db.Index("ix_shifts_location_date", "stock_location_id", "shift_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    stock_location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False)
    shift_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=True)
    start_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    opened_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    user = db.relationship("User", lazy="joined")
    snapshots = db.relationship(
        "ShiftStockSnapshot",
        back_populates="shift",
        lazy="selectin",
        order_by="ShiftStockSnapshot.id",
    )

    @property
    def status(self) -> str:
        return "OPEN" if self.end_time is None else "CLOSED"

    def __repr__(self) -> str:
        return f"<Shift id={self.id} user_id={self.user_id} location_id={self.stock_location_id} {self.status}>"

    def to_dict(self, include_snapshots: bool = False) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user.name if self.user else None,
            "stock_location_id": self.stock_location_id,
            "shift_date": self.shift_date.isoformat(),
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "opened_at": to_utc_z(self.opened_at),
            "start_amount_cents": self.start_amount_cents,
            "status": self.status,
        }
        if include_snapshots:
            data["snapshots"] = [s.to_dict() for s in self.snapshots]
        return data


class ShiftStockSnapshot(db.Model):
    """Quantity of one product at the shift's location at open (START) or close (END)."""
    __tablename__ = "shift_stock_snapshots"
    __table_args__ = (
        db.Index("ix_snapshots_shift_type", "shift_id", "type"),
        db.UniqueConstraint("shift_id", "product_id", "type", name="uq_snapshot_shift_product_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(8), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    shift = db.relationship("Shift", back_populates="snapshots")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "type": self.type,
        }
