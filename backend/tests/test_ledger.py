"""
Stock ledger tests: movement log vs cached balances.

The cached WarehouseStock quantity must always equal the sum of the movement
log for its (product, location) pair.
"""

import pytest
from sqlalchemy import func

from ipvpos.extensions import db
from ipvpos.models import InventoryMovement, WarehouseStock, MOVEMENT_PURCHASE
from ipvpos.services import ledger_service
from ipvpos.services.adjustment_service import create_adjustment
from ipvpos.services.concurrency import run_in_transaction
from ipvpos.services.transfer_service import create_transfer
from ipvpos.validation import ValidationError


def _ledger_sum(product_id, location_id):
    return db.session.query(
        func.coalesce(func.sum(InventoryMovement.quantity), 0)
    ).filter_by(product_id=product_id, location_id=location_id).scalar()


def test_balances_match_log_after_mixed_operations(
    db_session, user, location, location_b, product, product_b, purchase_into, sell
):
    purchase_into(product, location, 10, 500)
    purchase_into(product_b, location, 4, 200)
    sell(product, 3, 800)
    create_transfer(product.id, location.id, location_b.id, 2, user.id)
    create_adjustment(user.id, location.id, product.id, "Rotura", 1)
    sell(product_b, 1, 350)

    for stock in db_session.query(WarehouseStock).all():
        assert stock.quantity == _ledger_sum(stock.product_id, stock.location_id)

    assert ledger_service.get_stock(product.id, location.id) == 4
    assert ledger_service.get_stock(product.id, location_b.id) == 2
    assert ledger_service.get_stock(product_b.id, location.id) == 3
    assert ledger_service.audit_balances() == []


def test_record_movement_creates_balance_row(db_session, user, location, product):
    def _op():
        return ledger_service.record_movement(
            product_id=product.id,
            location_id=location.id,
            quantity=7,
            movement_type=MOVEMENT_PURCHASE,
            reference="manual-1",
            user_id=user.id,
        )

    movement = run_in_transaction(_op)

    assert movement.quantity == 7
    stock = db_session.query(WarehouseStock).filter_by(product_id=product.id, location_id=location.id).one()
    assert stock.quantity == 7


def test_record_movement_increments_existing_row(db_session, user, location, product):
    def _post(qty):
        return run_in_transaction(lambda: ledger_service.record_movement(
            product_id=product.id,
            location_id=location.id,
            quantity=qty,
            movement_type=MOVEMENT_PURCHASE,
            reference=None,
            user_id=user.id,
        ))

    _post(5)
    _post(-2)
    _post(4)

    assert db_session.query(WarehouseStock).count() == 1
    assert ledger_service.get_stock(product.id, location.id) == 7


def test_record_movement_rejects_zero_and_unknown_type(db_session, user, location, product):
    with pytest.raises(ValidationError):
        ledger_service.record_movement(
            product_id=product.id, location_id=location.id, quantity=0,
            movement_type=MOVEMENT_PURCHASE, reference=None, user_id=user.id,
        )
    with pytest.raises(ValidationError):
        ledger_service.record_movement(
            product_id=product.id, location_id=location.id, quantity=1,
            movement_type="GIFT", reference=None, user_id=user.id,
        )
    db_session.rollback()
    assert db_session.query(InventoryMovement).count() == 0


def test_get_stock_unknown_pair_is_zero(db_session, location, product):
    assert ledger_service.get_stock(product.id, location.id) == 0


def test_audit_detects_and_rebuild_repairs_drift(db_session, location, product, purchase_into):
    purchase_into(product, location, 10, 500)

    # Corrupt the cache behind the ledger's back
    db_session.query(WarehouseStock).update({WarehouseStock.quantity: 3})
    db_session.commit()

    mismatches = ledger_service.audit_balances()
    assert mismatches == [{
        "product_id": product.id,
        "location_id": location.id,
        "cached_quantity": 3,
        "ledger_quantity": 10,
    }]

    assert ledger_service.rebuild_balances() == 1
    assert ledger_service.audit_balances() == []
    assert ledger_service.get_stock(product.id, location.id) == 10


def test_rebuild_creates_missing_rows(db_session, location, product, purchase_into):
    purchase_into(product, location, 6, 500)
    db_session.query(WarehouseStock).delete()
    db_session.commit()

    assert ledger_service.audit_balances()[0]["cached_quantity"] is None
    assert ledger_service.rebuild_balances() == 1
    assert ledger_service.get_stock(product.id, location.id) == 6
