import pytest

from ipvpos.models import InventoryMovement, Shift, MOVEMENT_TRANSFER
from ipvpos.services import catalog_service
from ipvpos.services.ledger_service import audit_balances, get_stock
from ipvpos.services.shift_service import get_or_create_today_shift
from ipvpos.services.transfer_service import create_transfer, get_transfer
from ipvpos.validation import InsufficientStock, NotFoundError, ValidationError


def test_transfer_moves_units_between_locations(db_session, user, location, location_b, product, purchase_into, sell):
    purchase_into(product, location, 10, 500)
    sell(product, 4, 800)

    reference = create_transfer(product.id, location.id, location_b.id, 3, user.id)

    assert get_stock(product.id, location.id) == 3
    assert get_stock(product.id, location_b.id) == 3

    legs = db_session.query(InventoryMovement).filter_by(movement_type=MOVEMENT_TRANSFER).all()
    assert len(legs) == 2
    assert {leg.reference for leg in legs} == {reference}
    assert sum(leg.quantity for leg in legs) == 0
    assert audit_balances() == []


def test_transfer_round_trip_restores_balances(db_session, user, location, location_b, product, purchase_into):
    purchase_into(product, location, 8, 500)
    purchase_into(product, location_b, 2, 500)

    create_transfer(product.id, location.id, location_b.id, 5, user.id)
    create_transfer(product.id, location_b.id, location.id, 5, user.id)

    assert get_stock(product.id, location.id) == 8
    assert get_stock(product.id, location_b.id) == 2


def test_transfer_opens_shifts_at_both_ends(db_session, user, location, location_b, product, purchase_into):
    purchase_into(product, location, 4, 500)

    create_transfer(product.id, location.id, location_b.id, 1, user.id)

    shifts = db_session.query(Shift).all()
    assert {s.stock_location_id for s in shifts} == {location.id, location_b.id}


def test_transfer_reuses_existing_location_shift(db_session, user, location, location_b, product, purchase_into):
    purchase_into(product, location, 4, 500)
    other = catalog_service.create_user("Encargado", "encargado@ipvpos.local")
    existing = get_or_create_today_shift(other.id, location_b.id)

    create_transfer(product.id, location.id, location_b.id, 1, user.id)

    assert db_session.query(Shift).filter_by(stock_location_id=location_b.id).one().id == existing.id


def test_transfer_insufficient_stock(db_session, user, location, location_b, product, purchase_into):
    purchase_into(product, location, 2, 500)

    with pytest.raises(InsufficientStock) as exc_info:
        create_transfer(product.id, location.id, location_b.id, 3, user.id)

    assert exc_info.value.details["on_hand"] == 2
    assert db_session.query(InventoryMovement).filter_by(movement_type=MOVEMENT_TRANSFER).count() == 0
    assert db_session.query(Shift).count() == 0
    assert get_stock(product.id, location.id) == 2


def test_transfer_from_location_without_stock(db_session, user, location, location_b, product):
    with pytest.raises(InsufficientStock):
        create_transfer(product.id, location.id, location_b.id, 1, user.id)


@pytest.mark.parametrize("quantity", [0, -1])
def test_transfer_requires_positive_quantity(db_session, user, location, location_b, product, quantity):
    with pytest.raises(ValidationError):
        create_transfer(product.id, location.id, location_b.id, quantity, user.id)


def test_transfer_to_same_location(db_session, user, location, product):
    with pytest.raises(ValidationError):
        create_transfer(product.id, location.id, location.id, 1, user.id)


def test_transfer_unknown_destination(db_session, user, location, product, purchase_into):
    purchase_into(product, location, 2, 500)
    with pytest.raises(NotFoundError):
        create_transfer(product.id, location.id, 777, 1, user.id)


def test_get_transfer(db_session, user, location, location_b, product, purchase_into):
    purchase_into(product, location, 5, 500)
    reference = create_transfer(product.id, location.id, location_b.id, 2, user.id)

    transfer = get_transfer(reference)

    assert transfer["quantity"] == 2
    assert transfer["from_location_id"] == location.id
    assert transfer["to_location_id"] == location_b.id
    assert transfer["user_id"] == user.id
    assert len(transfer["movements"]) == 2

    with pytest.raises(NotFoundError):
        get_transfer("does-not-exist")
