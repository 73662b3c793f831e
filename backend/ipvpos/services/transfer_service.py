# backend/ipvpos/services/transfer_service.py
"""
Inter-location stock transfer service.

WHY: Moving stock between locations must never create or destroy units.
A transfer is two TRANSFER movements sharing one reference: -quantity at the
source and +quantity at the destination, posted in one transaction.

Transfers open today's shift at both ends when missing, so the moved units
show up in the IPV inbound/outflow columns of both locations.
"""
from __future__ import annotations

import uuid

from flask import current_app

from ..extensions import db
from ..models import InventoryMovement, WarehouseStock, MOVEMENT_TRANSFER
from ..validation import InsufficientStock, NotFoundError, ValidationError, coerce_int
from .catalog_service import get_location, get_product, get_user
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import record_movement
from .shift_service import _ensure_location_shift


def create_transfer(
    product_id: int,
    from_location_id: int,
    to_location_id: int,
    quantity: int,
    user_id: int,
) -> str:
    """
    Move quantity units of a product between two locations.

    Returns:
        str: the transfer reference shared by both movements

    Raises:
        ValidationError: same location, non-positive quantity
        NotFoundError: unknown product, location or user
        InsufficientStock: the source holds less than quantity
    """
    product_id = coerce_int(product_id, "product_id", minimum=1)
    from_location_id = coerce_int(from_location_id, "from_location_id", minimum=1)
    to_location_id = coerce_int(to_location_id, "to_location_id", minimum=1)
    quantity = coerce_int(quantity, "quantity")
    user_id = coerce_int(user_id, "user_id", minimum=1)

    if from_location_id == to_location_id:
        raise ValidationError("Cannot transfer to the same location")
    if quantity <= 0:
        raise ValidationError("Quantity must be positive")

    def _op():
        get_user(user_id)
        get_product(product_id, require_active=False)
        get_location(from_location_id)
        get_location(to_location_id)

        # Lock the source balance before checking it
        source = lock_for_update(
            db.session.query(WarehouseStock).filter_by(product_id=product_id, location_id=from_location_id)
        ).first()
        on_hand = source.quantity if source is not None else 0
        if on_hand < quantity:
            raise InsufficientStock(
                f"Insufficient inventory for product {product_id}. "
                f"On-hand: {on_hand}, requested: {quantity}",
                details={"product_id": product_id, "on_hand": on_hand, "requested_quantity": quantity},
            )

        _ensure_location_shift(user_id, from_location_id)
        _ensure_location_shift(user_id, to_location_id)

        reference = uuid.uuid4().hex
        record_movement(
            product_id=product_id,
            location_id=from_location_id,
            quantity=-quantity,
            movement_type=MOVEMENT_TRANSFER,
            reference=reference,
            user_id=user_id,
        )
        record_movement(
            product_id=product_id,
            location_id=to_location_id,
            quantity=quantity,
            movement_type=MOVEMENT_TRANSFER,
            reference=reference,
            user_id=user_id,
        )
        return reference

    reference = run_in_transaction(_op)
    current_app.logger.info(
        "Transferred %d of product %s from location %s to %s (%s)",
        quantity, product_id, from_location_id, to_location_id, reference,
    )
    return reference


def get_transfer(reference: str) -> dict:
    """Both legs of a transfer."""
    movements = db.session.query(InventoryMovement).filter_by(
        reference=reference,
        movement_type=MOVEMENT_TRANSFER,
    ).order_by(InventoryMovement.quantity.asc()).all()
    if not movements:
        raise NotFoundError(f"Transfer {reference} not found")

    outbound = next((m for m in movements if m.quantity < 0), None)
    inbound = next((m for m in movements if m.quantity > 0), None)
    return {
        "reference": reference,
        "product_id": movements[0].product_id,
        "quantity": inbound.quantity if inbound else -outbound.quantity,
        "from_location_id": outbound.location_id if outbound else None,
        "to_location_id": inbound.location_id if inbound else None,
        "user_id": movements[0].user_id,
        "movements": [m.to_dict() for m in movements],
    }
