"""
Concurrency tests.

Thread tests run against a file-backed SQLite database so that every worker
gets its own connection; BEGIN IMMEDIATE serialises the writers.
"""

import threading

import pytest
from sqlalchemy import func
from sqlalchemy.exc import OperationalError

from ipvpos import create_app
from ipvpos.extensions import db
from ipvpos.models import PurchaseItem, SaleItem, SaleItemCostAllocation, Shift
from ipvpos.services import catalog_service
from ipvpos.services.concurrency import run_in_transaction
from ipvpos.services.ledger_service import audit_balances
from ipvpos.services.purchase_service import create_purchase
from ipvpos.services.sales_service import create_sale
from ipvpos.services.shift_service import get_or_create_today_shift
from ipvpos.validation import ConcurrencyConflict, InsufficientCostBasis, LedgerError, ValidationError


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'TRANSACTION_TIMEOUT_SECONDS': 15,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    """One cashier at one location and one product, ids only."""
    with file_app.app_context():
        catalog_service.ensure_payment_methods()
        location = catalog_service.create_stock_location("Almacen")
        user = catalog_service.create_user("Cajero", "cajero@ipvpos.local")
        catalog_service.assign_user_location(user.id, location.id)
        product = catalog_service.create_product("Ron", 500, 900)
        return {"user_id": user.id, "location_id": location.id, "product_id": product.id}


def _buy(app, ids, quantity, unit_cost):
    with app.app_context():
        create_purchase(
            ids["user_id"],
            ids["location_id"],
            [{"product_id": ids["product_id"], "quantity": quantity, "unit_price_cents": unit_cost}],
            quantity * unit_cost,
        )


def _run_concurrently(app, workers, target):
    barrier = threading.Barrier(workers)
    results = []
    lock = threading.Lock()

    def _worker():
        with app.app_context():
            barrier.wait()
            try:
                outcome = target()
            except LedgerError as exc:
                outcome = exc
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=_worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


def _sell(ids, quantity):
    def _target():
        sale = create_sale(
            ids["user_id"],
            [{"product_id": ids["product_id"], "quantity": quantity, "unit_price_cents": 900}],
            quantity * 900,
            "efectivo",
        )
        return sale.id
    return _target


def test_last_units_of_a_lot_go_to_one_sale(file_app, seeded):
    _buy(file_app, seeded, 5, 500)

    results = _run_concurrently(file_app, 2, _sell(seeded, 5))

    succeeded = [r for r in results if isinstance(r, int)]
    failed = [r for r in results if not isinstance(r, int)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], InsufficientCostBasis)

    with file_app.app_context():
        used = db.session.query(func.sum(SaleItemCostAllocation.quantity_used)).scalar()
        assert used == 5
        assert db.session.query(SaleItem).count() == 1
        assert audit_balances() == []


def test_second_sale_moves_to_next_lot(file_app, seeded):
    _buy(file_app, seeded, 5, 500)
    _buy(file_app, seeded, 5, 650)

    results = _run_concurrently(file_app, 2, _sell(seeded, 5))

    assert all(isinstance(r, int) for r in results)
    with file_app.app_context():
        lots = db.session.query(PurchaseItem).order_by(PurchaseItem.id).all()
        for lot in lots:
            allocations = db.session.query(SaleItemCostAllocation).filter_by(purchase_item_id=lot.id).all()
            assert len(allocations) == 1
            assert allocations[0].quantity_used == 5
        owners = {
            a.sale_item_id
            for a in db.session.query(SaleItemCostAllocation).all()
        }
        assert len(owners) == 2


def test_many_small_sales_never_over_allocate(file_app, seeded):
    _buy(file_app, seeded, 4, 500)

    results = _run_concurrently(file_app, 6, _sell(seeded, 1))

    assert len([r for r in results if isinstance(r, int)]) == 4
    assert all(isinstance(r, InsufficientCostBasis) for r in results if not isinstance(r, int))
    with file_app.app_context():
        assert db.session.query(func.sum(SaleItemCostAllocation.quantity_used)).scalar() == 4
        assert audit_balances() == []


def test_concurrent_shift_creation_yields_one_shift(file_app, seeded):
    def _target():
        return get_or_create_today_shift(seeded["user_id"], seeded["location_id"]).id

    results = _run_concurrently(file_app, 4, _target)

    assert len(set(results)) == 1
    with file_app.app_context():
        assert db.session.query(Shift).count() == 1


# =============================================================================
# RETRY LOOP
# =============================================================================

def _locked_error():
    return OperationalError("UPDATE warehouse_stocks", {}, Exception("database is locked"))


def test_retry_then_succeed(db_session, caplog):
    calls = []

    def _op():
        calls.append(1)
        if len(calls) == 1:
            raise _locked_error()
        return "done"

    assert run_in_transaction(_op, backoff_base=0) == "done"
    assert len(calls) == 2
    assert "Retrying transaction after OperationalError" in caplog.text


def test_retries_exhausted_raise_concurrency_conflict(db_session):
    calls = []

    def _op():
        calls.append(1)
        raise _locked_error()

    with pytest.raises(ConcurrencyConflict) as exc_info:
        run_in_transaction(_op, attempts=3, backoff_base=0)

    assert len(calls) == 3
    assert exc_info.value.retryable is True
    assert exc_info.value.details["attempts"] == 3


def test_non_retryable_errors_propagate_immediately(db_session):
    calls = []

    def _op():
        calls.append(1)
        raise ValidationError("bad input")

    with pytest.raises(ValidationError):
        run_in_transaction(_op, backoff_base=0)
    assert len(calls) == 1


def test_retry_budget_bounded_by_timeout(db_session):
    calls = []

    def _op():
        calls.append(1)
        raise ConcurrencyConflict("lot over-allocated")

    with pytest.raises(ConcurrencyConflict):
        run_in_transaction(_op, attempts=50, backoff_base=0.05, timeout=0.1)
    assert len(calls) < 50
