"""
History listing tests: sales, purchases and adjustments.

Listings return (page, total) newest first; search matches names of the
related user, product, location (and payment method or reason).
"""

from datetime import timedelta

import pytest

from ipvpos.services import catalog_service
from ipvpos.services.adjustment_service import create_adjustment, get_adjustment, list_adjustments
from ipvpos.services.purchase_service import list_purchases
from ipvpos.services.sales_service import create_sale, list_sales
from ipvpos.time_utils import utcnow
from ipvpos.validation import NotFoundError, ValidationError


@pytest.fixture
def seller_b(db_session, location_b):
    """Second cashier, working at the second location."""
    seller = catalog_service.create_user("Luis Vendedor", "luis@ipvpos.local")
    return catalog_service.assign_user_location(seller.id, location_b.id)


@pytest.fixture
def day_of_sales(user, seller_b, location, location_b, product, product_b, purchase_into, sell):
    purchase_into(product, location, 5, 500)
    purchase_into(product_b, location, 5, 200)
    purchase_into(product, location_b, 5, 500)

    cash = sell(product, 1, 800)
    transfer = sell(product_b, 2, 350, payment_method_name="transferencia", transfer_code="TRX-7")
    remote = create_sale(
        seller_b.id,
        [{"product_id": product.id, "quantity": 1, "unit_price_cents": 800}],
        800,
        "efectivo",
    )
    return cash, transfer, remote


def _ids(rows):
    return [row.id for row in rows]


def test_list_sales_newest_first(db_session, day_of_sales):
    cash, transfer, remote = day_of_sales

    rows, total = list_sales()

    assert total == 3
    assert _ids(rows) == [remote.id, transfer.id, cash.id]


def test_list_sales_filters(db_session, user, location_b, day_of_sales):
    cash, transfer, remote = day_of_sales

    assert _ids(list_sales(location_id=location_b.id)[0]) == [remote.id]
    assert _ids(list_sales(user_id=user.id)[0]) == [transfer.id, cash.id]
    assert list_sales(from_date=utcnow() + timedelta(hours=1)) == ([], 0)
    assert list_sales(to_date=utcnow() - timedelta(days=1)) == ([], 0)


@pytest.mark.parametrize("search, expected", [
    ("galle", ["transfer"]),
    ("TRANSFER", ["transfer"]),
    ("luis", ["remote"]),
    ("punto de venta", ["remote"]),
    ("efectivo", ["remote", "cash"]),
    ("refresco", ["remote", "cash"]),
    ("  ", ["remote", "transfer", "cash"]),
    ("100%", []),
])
def test_list_sales_search(db_session, day_of_sales, search, expected):
    by_name = dict(zip(["cash", "transfer", "remote"], day_of_sales))

    rows, total = list_sales(search=search)

    assert _ids(rows) == [by_name[name].id for name in expected]
    assert total == len(expected)


def test_list_sales_pagination(db_session, day_of_sales):
    cash, transfer, remote = day_of_sales

    first_page, total = list_sales(limit=2)
    second_page, _ = list_sales(limit=2, offset=2)

    assert total == 3
    assert _ids(first_page) == [remote.id, transfer.id]
    assert _ids(second_page) == [cash.id]


@pytest.mark.parametrize("kwargs", [
    {"limit": 0},
    {"limit": 501},
    {"offset": -1},
    {"search": 5},
    {"location_id": "x"},
])
def test_list_sales_rejects_bad_arguments(db_session, kwargs):
    with pytest.raises(ValidationError):
        list_sales(**kwargs)


def test_list_purchases(db_session, user, location, location_b, product, product_b, purchase_into):
    first = purchase_into(product, location, 4, 500)
    second = purchase_into(product_b, location_b, 6, 200)

    rows, total = list_purchases()
    assert total == 2
    assert _ids(rows) == [second.id, first.id]

    assert _ids(list_purchases(location_id=location.id)[0]) == [first.id]
    assert _ids(list_purchases(search="refres")[0]) == [first.id]
    assert _ids(list_purchases(search="PUNTO")[0]) == [second.id]
    assert list_purchases(search="ana")[1] == 2
    assert list_purchases(user_id=user.id + 100) == ([], 0)
    assert _ids(list_purchases(limit=1, offset=1)[0]) == [first.id]


def test_list_adjustments(db_session, user, location, product, product_b, purchase_into):
    purchase_into(product, location, 5, 500)
    purchase_into(product_b, location, 5, 200)

    broken = create_adjustment(user.id, location.id, product.id, "Rotura", 1)
    found = create_adjustment(user.id, location.id, product_b.id, "Conteo fisico", -2)

    rows, total = list_adjustments(location_id=location.id)
    assert total == 2
    assert _ids(rows) == [found.id, broken.id]

    assert _ids(list_adjustments(search="rotura")[0]) == [broken.id]
    assert _ids(list_adjustments(search="galletas")[0]) == [found.id]
    assert _ids(list_adjustments(product_id=product.id)[0]) == [broken.id]
    assert list_adjustments(search="ana cajera")[1] == 2
    assert list_adjustments(search="almacen")[1] == 2

    assert get_adjustment(found.id).quantity == -2
    with pytest.raises(NotFoundError):
        get_adjustment(found.id + 100)
