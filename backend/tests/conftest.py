"""
Pytest fixtures for IPV POS backend tests.

Provides the test application, a per-test database wipe and catalog fixtures
(stock locations, a cashier, products, payment methods).
"""

import pytest

from ipvpos import create_app
from ipvpos.extensions import db
from ipvpos.services import catalog_service
from ipvpos.services.purchase_service import create_purchase
from ipvpos.services.sales_service import create_sale


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'TRANSACTION_TIMEOUT_SECONDS': 5,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def payment_methods(db_session):
    """Seed efectivo (no reference) and transferencia (reference required)."""
    return catalog_service.ensure_payment_methods()


@pytest.fixture(scope='function')
def location(db_session):
    """Main stock location."""
    return catalog_service.create_stock_location("Almacen Central")


@pytest.fixture(scope='function')
def location_b(db_session):
    """Second stock location, destination of transfers."""
    return catalog_service.create_stock_location("Punto de Venta 2")


@pytest.fixture(scope='function')
def user(db_session, location):
    """Cashier assigned to the main location only."""
    cashier = catalog_service.create_user("Ana Cajera", "ana@ipvpos.local")
    return catalog_service.assign_user_location(cashier.id, location.id)


@pytest.fixture(scope='function')
def product(db_session):
    """Product P: bought at 5.00, sold at 8.00."""
    return catalog_service.create_product("Refresco", 500, 800)


@pytest.fixture(scope='function')
def product_b(db_session):
    return catalog_service.create_product("Galletas", 200, 350)


@pytest.fixture(scope='function')
def purchase_into(user):
    """Factory: purchase `quantity` units of a product at `unit_cost` cents into a location."""
    def _purchase(product, location, quantity, unit_cost):
        return create_purchase(
            user.id,
            location.id,
            [{"product_id": product.id, "quantity": quantity, "unit_price_cents": unit_cost}],
            quantity * unit_cost,
        )
    return _purchase


@pytest.fixture(scope='function')
def sell(user, payment_methods):
    """Factory: cash sale of one line by the cashier at their location."""
    def _sell(product, quantity, unit_price, **kwargs):
        kwargs.setdefault("payment_method_name", "efectivo")
        return create_sale(
            user.id,
            [{"product_id": product.id, "quantity": quantity, "unit_price_cents": unit_price}],
            quantity * unit_price,
            **kwargs,
        )
    return _sell
