import pytest

from ipvpos.models import PaymentMethod
from ipvpos.services import catalog_service
from ipvpos.validation import DuplicateReference, NotFoundError, ValidationError


def test_product_names_unique_ignoring_case(db_session, product):
    with pytest.raises(DuplicateReference):
        catalog_service.create_product("  refresco ", 100, 200)


def test_create_product_validates_prices(db_session):
    with pytest.raises(ValidationError):
        catalog_service.create_product("Cafe", -1, 200)
    with pytest.raises(ValidationError):
        catalog_service.create_product("Cafe", 100, "2.50")
    with pytest.raises(ValidationError):
        catalog_service.create_product("", 100, 200)


def test_update_product(db_session, product, product_b):
    updated = catalog_service.update_product(product.id, sale_price_cents=900, notes="Lata 355ml")
    assert updated.sale_price_cents == 900
    assert updated.notes == "Lata 355ml"

    renamed = catalog_service.update_product(product.id, name="REFRESCO")
    assert renamed.name == "REFRESCO"

    with pytest.raises(DuplicateReference):
        catalog_service.update_product(product.id, name="galletas")
    with pytest.raises(ValidationError):
        catalog_service.update_product(product.id, sku="X-1")


def test_location_price_override(db_session, location, location_b, product):
    assert catalog_service.get_sale_price(product.id, location.id) == 800

    catalog_service.set_location_price(product.id, location.id, 850)
    catalog_service.set_location_price(product.id, location.id, 875)

    assert catalog_service.get_sale_price(product.id, location.id) == 875
    assert catalog_service.get_sale_price(product.id, location_b.id) == 800
    assert catalog_service.get_sale_price(product.id) == 800


def test_stock_location_names_unique(db_session, location, location_b):
    with pytest.raises(DuplicateReference):
        catalog_service.create_stock_location("Almacen Central")
    with pytest.raises(DuplicateReference):
        catalog_service.update_stock_location(location_b.id, name="Almacen Central")


def test_inactive_product_cannot_be_purchased(db_session, user, location, product, purchase_into):
    catalog_service.update_product(product.id, is_active=False)

    with pytest.raises(ValidationError):
        purchase_into(product, location, 1, 500)


def test_user_email_unique(db_session, user):
    with pytest.raises(DuplicateReference):
        catalog_service.create_user("Otra Ana", "ANA@ipvpos.local")


def test_assign_location_is_idempotent(db_session, user, location):
    catalog_service.assign_user_location(user.id, location.id)
    refreshed = catalog_service.assign_user_location(user.id, location.id)

    assert [loc.id for loc in refreshed.stock_locations] == [location.id]


def test_ensure_payment_methods_is_idempotent(db_session):
    catalog_service.ensure_payment_methods()
    catalog_service.ensure_payment_methods()

    methods = {m.name: m.requires_reference for m in db_session.query(PaymentMethod).all()}
    assert methods == {"efectivo": False, "transferencia": True}


def test_payment_method_lookup(db_session, payment_methods):
    assert catalog_service.get_payment_method(" EFECTIVO ").name == "efectivo"
    with pytest.raises(NotFoundError):
        catalog_service.get_payment_method("cheque")


def test_list_location_stock(db_session, location, product, product_b, purchase_into):
    purchase_into(product, location, 4, 500)
    purchase_into(product_b, location, 9, 200)

    rows = catalog_service.list_location_stock(location.id)

    assert [(r["name"], r["quantity"]) for r in rows] == [("Galletas", 9), ("Refresco", 4)]


def test_lookups_raise_not_found(db_session):
    with pytest.raises(NotFoundError):
        catalog_service.get_user(1)
    with pytest.raises(NotFoundError):
        catalog_service.get_location(1)
    with pytest.raises(NotFoundError):
        catalog_service.get_product(1)
