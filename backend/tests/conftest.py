"""
Pytest fixtures for retailpos backend tests.

Provides the application on an in-memory database, a per-test table wipe,
inventory locations and a product factory that keeps Product.stock equal to
the sum of its ledger rows.
"""

from decimal import Decimal

import pytest

from retailpos import create_app
from retailpos.config import StoreSettings
from retailpos.extensions import db
from retailpos.models import Customer, InventoryLocation, Product, StockLevel


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
def settings():
    """Store settings pinned for tests (independent of environment overrides)."""
    return StoreSettings(
        currency_code="IDR",
        low_stock_threshold=10,
        dashboard_default_range_days=14,
        dashboard_max_range_days=90,
        loyalty_points_per_currency=Decimal("0.01"),
        loyalty_currency_per_point=Decimal("1.0"),
        loyalty_minimum_redeemable_points=50,
    )


@pytest.fixture(scope='function')
def floor(db_session):
    """Default location (shop floor)."""
    location = InventoryLocation(name="Shop Floor", code="FLOOR", is_default=True)
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def back_room(db_session):
    location = InventoryLocation(name="Back Room", code="BACK", is_default=False)
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def make_product(db_session, floor):
    """
    Factory: make_product(name, price_cents=..., levels={location_id: qty}).

    levels defaults to 10 units at the default location.
    """
    def _make(
        name="Test Product",
        *,
        price_cents=10000,
        cost_price_cents=6000,
        levels=None,
        reorder_point=None,
        barcode=None,
        supplier_id=None,
    ):
        levels = {floor.id: 10} if levels is None else levels
        product = Product(
            name=name,
            barcode=barcode,
            supplier_id=supplier_id,
            price_cents=price_cents,
            cost_price_cents=cost_price_cents,
            stock=sum(levels.values()),
            reorder_point=reorder_point,
        )
        db_session.add(product)
        db_session.flush()
        for location_id, quantity in levels.items():
            db_session.add(StockLevel(product_id=product.id, location_id=location_id, quantity=quantity))
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def customer(db_session):
    """Customer holding 500 loyalty points."""
    customer = Customer(name="Rina", loyalty_number="LOY-0001", loyalty_points=500)
    db_session.add(customer)
    db_session.commit()
    return customer
