"""
Pytest fixtures for stock ledger backend tests.

Provides test database setup, per-test table wipe, and catalog fixtures
(warehouses, zones, products, variants).
"""

import pytest
from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Warehouse, WarehouseZone, Product, ProductVariant


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'COMPOSITE_STOCK_MULTIPLY_BY_YIELD': False,
        'STOCK_TX_RETRY_ATTEMPTS': 3,
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
def warehouse_a(db_session):
    """Main warehouse."""
    warehouse = Warehouse(name="Main Warehouse", code="MAIN", is_active=True)
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def warehouse_b(db_session):
    """Second warehouse (transfer destination)."""
    warehouse = Warehouse(name="Downtown Bar", code="BAR", is_active=True)
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def zone_a1(db_session, warehouse_a):
    """Zone inside warehouse A."""
    zone = WarehouseZone(warehouse_id=warehouse_a.id, name="Cold Room")
    db_session.add(zone)
    db_session.commit()
    return zone


@pytest.fixture(scope='function')
def zone_b1(db_session, warehouse_b):
    """Zone inside warehouse B."""
    zone = WarehouseZone(warehouse_id=warehouse_b.id, name="Back Bar")
    db_session.add(zone)
    db_session.commit()
    return zone


@pytest.fixture(scope='function')
def product_a(db_session):
    """Stock-tracked product."""
    product = Product(sku="PROD-A-001", name="Product A", unit_of_measure="unit", track_stock=True)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session):
    """Second stock-tracked product."""
    product = Product(sku="PROD-B-001", name="Product B", unit_of_measure="unit", track_stock=True)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def variant_a(db_session, product_a):
    """Variant of product A."""
    variant = ProductVariant(product_id=product_a.id, name="Large", sku="PROD-A-001-L")
    db_session.add(variant)
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for extra products (recipe components and the like)."""
    def _make(sku: str, name: str | None = None, **kwargs) -> Product:
        product = Product(sku=sku, name=name or sku, **kwargs)
        db_session.add(product)
        db_session.commit()
        return product
    return _make
