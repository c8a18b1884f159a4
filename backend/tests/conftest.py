"""
Pytest fixtures for the warehouse backend tests.

Provides an in-memory database, a test client and a small set of master
data: two users, two warehouses, a location, a category, a brand, a customer
and a product with opening stock.
"""

import pytest

from wms import create_app
from wms.extensions import db
from wms.models import User, Category, Brand
from wms.services.customer_service import create_customer
from wms.services.products_service import create_product
from wms.services.warehouse_service import create_warehouse, create_location


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'EINVOICE_PREFIX': 'SETP',
        'EINVOICE_TECHNICAL_KEY': 'test-technical-key',
        'EINVOICE_ENVIRONMENT': '2',
        'EINVOICE_ISSUER_NIT': '900123456',
        'EINVOICE_ISSUER_NAME': 'Bodega Central SAS',
        'EINVOICE_ISSUER_ADDRESS': 'Calle 10 # 20-30',
        'EINVOICE_ISSUER_CITY': 'Bogota',
        'EINVOICE_ISSUER_DEPARTMENT': 'Cundinamarca',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


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
def user(db_session):
    """Creates documents; may not approve its own adjustments."""
    u = User(name="Clerk", email="clerk@wms.local", is_active=True)
    db_session.add(u)
    db_session.commit()
    return u


@pytest.fixture(scope='function')
def approver(db_session):
    u = User(name="Supervisor", email="supervisor@wms.local", is_active=True)
    db_session.add(u)
    db_session.commit()
    return u


@pytest.fixture(scope='function')
def main_warehouse(db_session):
    warehouse = create_warehouse({"name": "Main Warehouse", "code": "MAIN"}, is_main=True)
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def second_warehouse(db_session, main_warehouse):
    warehouse = create_warehouse({"name": "North Branch", "code": "NORTH", "city": "Medellin"})
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def location(db_session, main_warehouse):
    loc = create_location({
        "warehouse_id": main_warehouse.id,
        "name": "Aisle A",
        "code": "A-01",
        "type": "aisle",
    })
    db_session.commit()
    return loc


@pytest.fixture(scope='function')
def category(db_session):
    c = Category(name="Stationery", is_active=True, sort_order=0)
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def brand(db_session):
    b = Brand(name="Norma", is_active=True)
    db_session.add(b)
    db_session.commit()
    return b


@pytest.fixture(scope='function')
def customer(db_session):
    c = create_customer({
        "name": "Ferreteria El Tornillo",
        "email": "compras@tornillo.co",
        "document_type": "NIT",
        "tax_id": "800555111",
        "address": "Carrera 7 # 12-40",
        "city": "Bogota",
        "customer_type": "business",
        "payment_terms": "net_30",
        "credit_limit_cents": 500_000,
    })
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def make_product(db_session, user, main_warehouse):
    """Factory: create a product with opening stock in the main warehouse."""
    def _make(sku="SKU-001", name="Notebook", quantity=10, price=2_000, cost=1_000, **extra):
        patch = {
            "sku": sku,
            "name": name,
            "unit_price_cents": price,
            "cost_cents": cost,
            "tax_rate_bps": extra.pop("tax_rate_bps", 1900),
        }
        patch.update(extra)
        product = create_product(
            patch=patch,
            initial_quantity=quantity,
            user_id=user.id,
            warehouse_id=main_warehouse.id,
        )
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """SKU-001 with 10 units on hand."""
    return make_product()


@pytest.fixture(scope='function')
def headers(user):
    """Request headers naming `user` as the acting user."""
    return {"X-User-Id": str(user.id)}


@pytest.fixture(scope='function')
def approver_headers(approver):
    return {"X-User-Id": str(approver.id)}
